# Overview: Shared SQLAlchemy and Alembic extension instances.

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# SQLite cannot ALTER most constraints in place; batch mode rebuilds the table
migrate = Migrate(compare_type=True, render_as_batch=True)
