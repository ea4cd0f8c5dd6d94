from flask import Blueprint

review_bp = Blueprint("review", __name__)

from app.review import routes  # noqa: E402,F401
