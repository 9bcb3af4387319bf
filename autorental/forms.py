"""Form parsing helpers.

Handlers read raw strings from ``request.form`` / ``request.args`` and
convert them here.  A :class:`FormReader` collects every problem with a
submission so the user sees all of them at once; ``validate()`` raises a
single :class:`ValidationError` carrying a ``{field: message}`` dict.
"""

import math
from datetime import datetime, date, time

from .errors import ValidationError


TRUE_VALUES = ('1', 'true', 'on', 'yes')


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in TRUE_VALUES


def parse_float(value) -> float:
    """Like ``float()`` but refuses nan and the infinities."""
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def parse_date(value: str) -> date:
    return datetime.strptime(value.strip(), '%Y-%m-%d').date()


def parse_datetime(value: str) -> datetime:
    value = value.strip()
    for fmt in ('%Y-%m-%dT%H:%M', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d %H:%M:%S'):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"invalid datetime: {value!r}")


def parse_time(value: str) -> time:
    value = value.strip()
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"invalid time: {value!r}")


class FormReader:
    """Reads typed values from a mapping and remembers what went wrong."""

    def __init__(self, data):
        self.data = data
        self.errors = {}

    def raw(self, field):
        value = self.data.get(field)
        if isinstance(value, str):
            value = value.strip()
        return value

    def has(self, field) -> bool:
        return self.raw(field) not in (None, '')

    def error(self, field, message):
        self.errors.setdefault(field, message)

    def label(self, field):
        return field.replace('_', ' ')

    def str(self, field, required=False, max_length=None, default=None):
        value = self.raw(field)
        if value in (None, ''):
            if required:
                self.error(field, f"The {self.label(field)} field is required.")
            return default
        value = str(value)
        if max_length is not None and len(value) > max_length:
            self.error(field, f"The {self.label(field)} may not be greater than {max_length} characters.")
        return value

    def int(self, field, required=False, min_value=None, max_value=None, default=None):
        value = self.raw(field)
        if value in (None, ''):
            if required:
                self.error(field, f"The {self.label(field)} field is required.")
            return default
        try:
            number = int(value)
        except (TypeError, ValueError):
            self.error(field, f"The {self.label(field)} must be an integer.")
            return default
        self._check_range(field, number, min_value, max_value)
        return number

    def float(self, field, required=False, min_value=None, max_value=None, default=None):
        value = self.raw(field)
        if value in (None, ''):
            if required:
                self.error(field, f"The {self.label(field)} field is required.")
            return default
        try:
            number = parse_float(value)
        except (TypeError, ValueError):
            self.error(field, f"The {self.label(field)} must be a number.")
            return default
        self._check_range(field, number, min_value, max_value)
        return number

    def bool(self, field, default=False):
        value = self.raw(field)
        if value in (None, ''):
            return default
        return parse_bool(value)

    def choice(self, field, choices, required=False, default=None):
        value = self.raw(field)
        if value in (None, ''):
            if required:
                self.error(field, f"The {self.label(field)} field is required.")
            return default
        if value not in choices:
            self.error(field, f"The selected {self.label(field)} is invalid.")
            return default
        return value

    def date(self, field, required=False, default=None):
        return self._parsed(field, parse_date, 'date', required, default)

    def datetime(self, field, required=False, default=None):
        return self._parsed(field, parse_datetime, 'date and time', required, default)

    def time(self, field, required=False, default=None):
        return self._parsed(field, parse_time, 'time', required, default)

    def validate(self):
        if self.errors:
            raise ValidationError(self.errors)

    def _parsed(self, field, parser, kind, required, default):
        value = self.raw(field)
        if value in (None, ''):
            if required:
                self.error(field, f"The {self.label(field)} field is required.")
            return default
        try:
            return parser(str(value))
        except ValueError:
            self.error(field, f"The {self.label(field)} is not a valid {kind}.")
            return default

    def _check_range(self, field, number, min_value, max_value):
        if min_value is not None and number < min_value:
            self.error(field, f"The {self.label(field)} must be at least {min_value}.")
        elif max_value is not None and number > max_value:
            self.error(field, f"The {self.label(field)} may not be greater than {max_value}.")


def model_values(obj) -> dict:
    """Column values of ``obj`` formatted the way the HTML inputs expect."""
    if obj is None:
        return {}
    values = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.name)
        if isinstance(value, datetime):
            value = value.strftime('%Y-%m-%dT%H:%M')
        elif isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, time):
            value = value.strftime('%H:%M')
        elif value is None:
            value = ''
        values[column.name] = value
    return values
