"""Flask extension instances, bound to the app in create_app()."""
from authlib.integrations.flask_client import OAuth
from flask_babel import Babel
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
babel = Babel()
oauth = OAuth()
