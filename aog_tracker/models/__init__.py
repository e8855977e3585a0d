"""
AOG Tracker
Shared SQLAlchemy handle. Model modules import ``db`` from here and the app
factory binds it with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
