"""
CSI Portal
Database models package.

The shared ``db`` handle is created here and bound to the app in
``create_app``; model modules import it as ``from csi_portal.models import db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
