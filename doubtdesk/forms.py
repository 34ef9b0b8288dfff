from datetime import datetime, timezone

from flask import request
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, TextAreaField, IntegerField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, AnyOf, Optional
from wtforms.validators import ValidationError as FieldError

from doubtdesk import constants as C
from doubtdesk.errors import ValidationError


class JsonForm(FlaskForm):
    """Form bound to the JSON request body.

    CSRF is checked per request in ``create_app`` for cookie sessions, so the
    forms themselves carry no token field.
    """

    class Meta:
        csrf = False


def validated(form_class):
    """Instantiate and validate a form, raising ValidationError on the first problem."""
    form = form_class()
    if not form.validate():
        field_name, errors = next(iter(form.errors.items()))
        raise ValidationError(f'{field_name}: {errors[0]}')
    return form


def _require_whole_number(field, message):
    # IntegerField would truncate 4.9 to 4 and read true as 1
    raw = field.raw_data[0] if field.raw_data else None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise FieldError(message)


def json_list(key):
    """A list value from the JSON body; forms flatten lists into multi-values."""
    body = request.get_json(silent=True) or {}
    value = body.get(key) or []
    if not isinstance(value, list):
        raise ValidationError(f'{key} must be a list.')
    return value


class SessionForm(JsonForm):
    id_token = StringField('ID token', validators=[Optional()])
    email = StringField('Email', validators=[Optional(), Length(max=254)])
    password = PasswordField('Password', validators=[Optional()])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if not self.id_token.data and not (self.email.data and self.password.data):
            self.id_token.errors.append('Provide an ID token or an email and password.')
            return False
        return True


class MessageForm(JsonForm):
    content = TextAreaField('Content', validators=[DataRequired(message='Message content is required.')])
    message_type = StringField('Message type', default=C.MSG_TEXT, validators=[
        Optional(), AnyOf(C.MESSAGE_TYPES, message='Unknown message type.'),
    ])
    file_name = StringField('File name', validators=[Optional(), Length(max=255)])
    poll_id = StringField('Poll', validators=[Optional()])
    topic_id = StringField('Topic', validators=[Optional(), Length(max=120)])


class DoubtForm(JsonForm):
    paper_id = StringField('Paper', validators=[DataRequired(message='Please select a paper.')])
    title = StringField('Title', validators=[
        DataRequired(message='Please enter a doubt title.'), Length(max=200),
    ])
    image_url = StringField('Screenshot', validators=[
        DataRequired(message='Please attach a screenshot for the doubt.'),
    ])
    sla_deadline = StringField('SLA deadline', validators=[Optional()])

    def validate_sla_deadline(self, field):
        try:
            deadline = datetime.fromisoformat(field.data.replace('Z', '+00:00'))
        except ValueError:
            raise FieldError('Use an ISO-8601 timestamp.')
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        field.parsed = deadline

    @property
    def deadline(self):
        return getattr(self.sla_deadline, 'parsed', None)


class RatingForm(JsonForm):
    faculty_id = StringField('Faculty', validators=[DataRequired()])
    paper_id = StringField('Paper', validators=[Optional()])
    rating = IntegerField('Rating', validators=[
        InputRequired(message='Please select a star rating before submitting.'),
        NumberRange(min=1, max=5, message='Ratings must be between 1 and 5.'),
    ])
    comment = TextAreaField('Comment', validators=[Optional(), Length(max=1000)])

    def validate_rating(self, field):
        _require_whole_number(field, 'Ratings must be a whole number of stars.')


class TopicForm(JsonForm):
    name = StringField('Topic name', validators=[DataRequired(message='Please enter a topic name.'), Length(max=120)])


class PollForm(JsonForm):
    question = StringField('Question', validators=[DataRequired(message='Please enter a question.'), Length(max=300)])
    topic_id = StringField('Topic', validators=[Optional()])


class VoteForm(JsonForm):
    # Index 0 is a valid answer, so presence is checked by the range alone
    option_index = IntegerField('Option', validators=[
        NumberRange(min=0, message='Pick one of the poll options.'),
    ])

    def validate_option_index(self, field):
        _require_whole_number(field, 'Pick one of the poll options.')


class FaqForm(JsonForm):
    question_text = TextAreaField('Question', validators=[DataRequired()])
    answer_text = TextAreaField('Answer', validators=[DataRequired()])
    answer_media_url = StringField('Answer media', validators=[Optional()])
    answer_media_type = StringField('Answer media type', default=C.MSG_TEXT, validators=[
        Optional(), AnyOf(C.MESSAGE_TYPES),
    ])


class FaqDraftForm(JsonForm):
    message_id = StringField('Message', validators=[DataRequired()])
