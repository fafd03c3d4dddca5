from flask_wtf import FlaskForm
from wtforms import StringField, DateTimeField, IntegerField, PasswordField, BooleanField
from wtforms.validators import DataRequired, Optional, Length, NumberRange, Regexp

DATETIME_FORMATS = ['%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M']

class VoterLoginForm(FlaskForm):
    identifier = StringField('Matric Number', validators=[
        DataRequired(), Regexp(r'^[a-zA-Z0-9]{6,15}$', message='Invalid matric number format')])
    fullName = StringField('Full Name', validators=[Optional(), Length(max=100)])
    department = StringField('Department', validators=[Optional(), Length(max=100)])
    image = StringField('Image', validators=[Optional()])

class VoterRegistrationForm(VoterLoginForm):
    fullName = StringField('Full Name', validators=[DataRequired(), Length(max=100)])
    department = StringField('Department', validators=[DataRequired(), Length(max=100)])

class PositionForm(FlaskForm):
    position = StringField('Position', validators=[DataRequired(), Length(max=100)])
    allowMultiple = BooleanField('Allow Multiple Selections', default=False)

class CandidateForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=100)])
    position = StringField('Position', validators=[DataRequired(), Length(max=100)])
    nickname = StringField('Nickname', validators=[Optional(), Length(max=50)])
    department = StringField('Department', validators=[Optional(), Length(max=100)])
    level = StringField('Level', validators=[Optional(), Length(max=20)])
    image = StringField('Image', validators=[Optional(), Length(max=500)])

class CandidateUpdateForm(FlaskForm):
    name = StringField('Name', validators=[Optional(), Length(max=100)])
    nickname = StringField('Nickname', validators=[Optional(), Length(max=50)])
    department = StringField('Department', validators=[Optional(), Length(max=100)])
    level = StringField('Level', validators=[Optional(), Length(max=20)])
    image = StringField('Image', validators=[Optional(), Length(max=500)])

class WindowConfigForm(FlaskForm):
    votingStartTime = DateTimeField('Voting Start Time', format=DATETIME_FORMATS, validators=[Optional()])
    votingEndTime = DateTimeField('Voting End Time', format=DATETIME_FORMATS, validators=[Optional()])
    loginDuration = IntegerField('Login Duration (minutes)', validators=[
        Optional(), NumberRange(min=1, max=120, message="Login duration must be between 1 and 120 minutes.")])
    isVotingActive = BooleanField('Voting Active')

    def changes(self):
        """Only the fields the request actually sent, keyed by model attribute."""
        mapping = {
            'votingStartTime': 'voting_start_time',
            'votingEndTime': 'voting_end_time',
            'loginDuration': 'login_duration',
            'isVotingActive': 'is_voting_active',
        }
        changes = {}
        for field_name, attribute in mapping.items():
            field = getattr(self, field_name)
            if field.raw_data:
                changes[attribute] = field.data
        return changes

class AdminLoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
