# -*- coding: utf-8 -*-
"""
Database handle shared by models, services and jobs.

A single Flask-SQLAlchemy instance; the app factory binds it with init_app().
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
