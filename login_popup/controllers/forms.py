"""Forms for the login popup."""

from typing import Optional

from wtforms import Form, StringField, PasswordField, BooleanField
from wtforms.validators import DataRequired


def strip_filter(value: Optional[str]) -> Optional[str]:
    """Strip surrounding whitespace from a field value."""
    if value is not None and hasattr(value, 'strip'):
        return value.strip()
    return value


class LoginForm(Form):
    """Log in form."""

    login = StringField('Username or Email', validators=[DataRequired()],
                        filters=[strip_filter])
    password = PasswordField('Password', validators=[DataRequired()])
    remember = BooleanField('Remember Me', false_values=(False, 'false', '',
                                                         '0'))
