"""
CSI Portal
Public blueprint — survey links and uploaded files, no token required.

    GET /survey/<id>        survey form (same payload as the responses form endpoint)
    GET /s/<code>           short link, redirects to the full survey link
    GET /uploads/<path>     files stored under UPLOAD_FOLDER
"""

from flask import Blueprint, current_app, redirect, send_from_directory, url_for

from csi_portal.services import response_service, survey_service
from csi_portal.utils.errors import api_ok

public_bp = Blueprint("public", __name__)


@public_bp.route("/survey/<int:survey_id>", methods=["GET"])
def survey_page(survey_id):
    return api_ok(response_service.get_survey_form(survey_id))


@public_bp.route("/s/<code>", methods=["GET"])
def short_link(code):
    survey = survey_service.resolve_short_code(code)
    return redirect(survey.survey_link or url_for("public.survey_page", survey_id=survey.id), code=302)


@public_bp.route("/uploads/<path:filename>", methods=["GET"])
def uploaded_file(filename):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)
