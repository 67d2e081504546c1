from flask_wtf import FlaskForm
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import Email, EqualTo, InputRequired, Length, ValidationError

from ..models import User

# JSON ``false`` arrives as a Python bool rather than the string "false".
_FALSE_VALUES = (False, "false", "False", "0", "")


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _normalise_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class RegistrationForm(FlaskForm):
    display_name = StringField("Display name", validators=[InputRequired(), Length(max=120)], filters=[_strip])
    email = StringField(
        "Email",
        validators=[InputRequired(), Email(), Length(max=255)],
        filters=[_normalise_email],
    )
    password = PasswordField("Password", validators=[InputRequired(), Length(min=8, max=128)])
    confirm_password = PasswordField(
        "Confirm password",
        validators=[InputRequired(), EqualTo("password", message="Passwords must match.")],
    )

    def validate_email(self, field: StringField) -> None:
        if User.query.filter_by(email=field.data).first():
            raise ValidationError("An account with that email already exists.")


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[InputRequired(), Email(), Length(max=255)], filters=[_normalise_email])
    password = PasswordField("Password", validators=[InputRequired()])
    remember = BooleanField("Keep me signed in", false_values=_FALSE_VALUES)
