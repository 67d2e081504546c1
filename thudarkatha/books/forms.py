from flask_wtf import FlaskForm
from wtforms import Field, IntegerField, SelectMultipleField, StringField, TextAreaField
from wtforms.validators import AnyOf, InputRequired, Length, NumberRange, Optional, URL, ValidationError

from ..models import GENRE_CHOICES, POV_CHOICES, WRITING_STYLE_CHOICES


class StringListField(Field):
    """A list of strings, sent as a JSON array or as repeated form keys."""

    def process_formdata(self, valuelist):
        self.data = [str(value).strip() for value in valuelist if value is not None and str(value).strip()]


class IntegerListField(Field):
    def process_formdata(self, valuelist):
        try:
            self.data = [int(value) for value in valuelist]
        except (TypeError, ValueError):
            self.data = []
            raise ValueError("Part numbers must be integers.")


def _genres_field():
    return SelectMultipleField(
        "Genres",
        choices=[(genre, genre) for genre in GENRE_CHOICES],
        validators=[Optional()],
    )


class BookForm(FlaskForm):
    name = StringField("Book name", validators=[InputRequired(), Length(max=150)])
    premise = TextAreaField("Story premise", validators=[Optional(), Length(max=5000)])
    genres = _genres_field()
    cover_url = StringField("Cover URL", validators=[Optional(), URL(), Length(max=500)])


class BookMetadataForm(FlaskForm):
    name = StringField("Book name", validators=[Optional(), Length(max=150)])
    premise = TextAreaField("Story premise", validators=[Optional(), Length(max=5000)])
    genres = _genres_field()
    setting = TextAreaField("Setting", validators=[Optional(), Length(max=2000)])
    theme = TextAreaField("Theme", validators=[Optional(), Length(max=2000)])
    tone = StringField("Tone", validators=[Optional(), Length(max=120)])
    pov = StringField("Point of view", validators=[Optional(), AnyOf(POV_CHOICES)])
    dialogue_style = TextAreaField("Dialogue style", validators=[Optional(), Length(max=2000)])
    cover_url = StringField("Cover URL", validators=[Optional(), URL(), Length(max=500)])


class CharacterForm(FlaskForm):
    name = StringField("Name", validators=[InputRequired(), Length(max=120)])
    nickname = StringField("Nickname", validators=[Optional(), Length(max=120)])
    role = StringField("Role", validators=[Optional(), Length(max=120)])
    connections = StringListField("Connections")


class CharacterUpdateForm(CharacterForm):
    name = StringField("Name", validators=[Optional(), Length(max=120)])


class CharacterRosterForm(FlaskForm):
    count = IntegerField("Number of characters", default=3, validators=[Optional(), NumberRange(min=1, max=10)])


class StoryArcForm(FlaskForm):
    total_parts = IntegerField(
        "Number of parts",
        validators=[InputRequired(), NumberRange(min=1, max=200)],
    )


class StoryPartForm(FlaskForm):
    title = StringField("Title", validators=[Optional(), Length(max=150)])
    summary = TextAreaField("Summary", validators=[Optional()])
    content = TextAreaField("Full story", validators=[Optional()])
    writing_style = StringField("Writing style", validators=[Optional(), AnyOf(WRITING_STYLE_CHOICES)])


class SummaryRangeForm(FlaskForm):
    start = IntegerField("First part", validators=[Optional(), NumberRange(min=0)])
    end = IntegerField("Last part", validators=[Optional(), NumberRange(min=1)])


class PartSelectionForm(FlaskForm):
    part_numbers = IntegerListField("Parts", validators=[InputRequired(message="Select at least one part to generate.")])

    def validate_part_numbers(self, field: IntegerListField) -> None:
        if any(number < 1 for number in field.data or []):
            raise ValidationError("Part numbers start at 1.")
