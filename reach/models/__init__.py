"""
REACH Content Board
Model package — shared SQLAlchemy handle.

Every model module imports ``db`` from here so that a single
``SQLAlchemy()`` instance is bound to the app in ``create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
