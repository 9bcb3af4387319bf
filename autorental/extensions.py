"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# Bound to the application inside create_app().
db = SQLAlchemy()
