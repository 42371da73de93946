"""Certification workflow blueprint.

REST API over the workflow services. Every endpoint acts as the user
resolved from the Bearer token; services own all business rules and commits.

Endpoint groups:
  Projects           GET/POST /api/v1/projects
                     GET      /api/v1/projects/<id>
                     POST     /api/v1/projects/<id>/transition
                     GET/POST /api/v1/projects/<id>/team
  Phases             GET      /api/v1/projects/<id>/phases
                     GET      /api/v1/projects/<id>/progress
                     POST     /api/v1/projects/<id>/phases/<n>/start
                     POST     /api/v1/projects/<id>/phases/<n>/complete
                     PATCH    /api/v1/projects/<id>/phases/<n>
  Documents          GET/POST /api/v1/projects/<id>/documents
                     POST     /api/v1/documents/<id>/transition
                     GET      /api/v1/documents/<id>/history
  Inspections        POST     /api/v1/projects/<id>/inspections
                     GET/POST /api/v1/inspections/<id>/responses
                     POST     /api/v1/checklist-responses/<id>/review
  Payments           POST     /api/v1/projects/<id>/payments
                     POST     /api/v1/payments/<id>/verify
                     POST     /api/v1/payments/<id>/reject
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import certflow.services.checklist_lifecycle as checklists
import certflow.services.document_lifecycle as documents
import certflow.services.payment_service as payments
import certflow.services.phase_tracker as phases
import certflow.services.project_lifecycle as lifecycle
import certflow.services.project_service as projects
from certflow.blueprints import json_body, parse_date, register_error_handlers
from certflow.middleware.identity import login_required
from certflow.services.tenancy import get_visible_project, list_visible_projects
from certflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


# ═════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    items = list_visible_projects(g.current_user, status=request.args.get("status") or None)
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)}), 200


@workflow_bp.route("/projects", methods=["POST"])
@login_required
def create_project():
    """Body: {name, client_id, application_type?, admin_lead_id?, project_lead_id?, ...}"""
    data = json_body()
    project = projects.create_project(
        g.current_user,
        name=data.get("name"),
        client_id=data.get("client_id"),
        application_type=data.get("application_type", "SLF"),
        admin_lead_id=data.get("admin_lead_id"),
        project_lead_id=data.get("project_lead_id"),
        location=data.get("location", ""),
        city=data.get("city", ""),
        description=data.get("description", ""),
    )
    return jsonify(project.to_dict()), 201


@workflow_bp.route("/projects/<int:project_id>", methods=["GET"])
@login_required
def get_project(project_id):
    project = get_visible_project(project_id, g.current_user)
    body = project.to_dict()
    body["available_transitions"] = lifecycle.get_available_targets(project, g.current_user)
    return jsonify(body), 200


@workflow_bp.route("/projects/<int:project_id>/transition", methods=["POST"])
@login_required
def transition_project(project_id):
    """Body: {target}"""
    target = json_body().get("target")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "target is required")
    result = lifecycle.transition_project(project_id, target, g.current_user)
    return jsonify(result), 200


@workflow_bp.route("/projects/<int:project_id>/team", methods=["GET"])
@login_required
def list_team(project_id):
    rows = projects.list_team(project_id, g.current_user)
    return jsonify([r.to_dict() for r in rows]), 200


@workflow_bp.route("/projects/<int:project_id>/team", methods=["POST"])
@login_required
def assign_team_member(project_id):
    """Body: {user_id, role}"""
    data = json_body()
    if not data.get("user_id") or not data.get("role"):
        return api_error(E.VALIDATION_REQUIRED, "user_id and role are required")
    row = projects.assign_team_member(
        project_id, g.current_user, user_id=data["user_id"], role=data["role"],
    )
    return jsonify(row.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Phases
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/phases", methods=["GET"])
@login_required
def list_phases(project_id):
    items = phases.list_phases(project_id, g.current_user)
    return jsonify([p.to_dict() for p in items]), 200


@workflow_bp.route("/projects/<int:project_id>/progress", methods=["GET"])
@login_required
def project_progress(project_id):
    return jsonify(phases.project_progress(project_id, g.current_user)), 200


@workflow_bp.route("/projects/<int:project_id>/phases/<int:phase_number>/start", methods=["POST"])
@login_required
def start_phase(project_id, phase_number):
    phase = phases.start_phase(project_id, phase_number, g.current_user)
    return jsonify(phase.to_dict()), 200


@workflow_bp.route("/projects/<int:project_id>/phases/<int:phase_number>/complete", methods=["POST"])
@login_required
def complete_phase(project_id, phase_number):
    result = phases.complete_phase(project_id, phase_number, g.current_user)
    return jsonify({
        "completed": result["completed"].to_dict(),
        "started": result["started"].to_dict() if result["started"] else None,
    }), 200


@workflow_bp.route("/projects/<int:project_id>/phases/<int:phase_number>", methods=["PATCH"])
@login_required
def update_phase(project_id, phase_number):
    """Body: {start_date?, estimated_duration?, phase_name?, description?, notes?, progress?}"""
    data = json_body()
    phase = phases.update_phase_schedule(
        project_id, phase_number, g.current_user,
        start_date=parse_date(data.get("start_date"), "start_date"),
        estimated_duration=data.get("estimated_duration"),
        phase_name=data.get("phase_name"),
        description=data.get("description"),
        notes=data.get("notes"),
        progress=data.get("progress"),
    )
    return jsonify(phase.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/documents", methods=["GET"])
@login_required
def list_documents(project_id):
    items = documents.list_documents(project_id, g.current_user,
                                     status=request.args.get("status") or None)
    return jsonify([d.to_dict() for d in items]), 200


@workflow_bp.route("/projects/<int:project_id>/documents", methods=["POST"])
@login_required
def create_document(project_id):
    """Body: {name, document_type?, url?}"""
    data = json_body()
    doc = documents.create_document(
        project_id, g.current_user,
        name=data.get("name"),
        document_type=data.get("document_type", "REPORT"),
        url=data.get("url", ""),
    )
    return jsonify(doc.to_dict()), 201


@workflow_bp.route("/documents/<int:document_id>/transition", methods=["POST"])
@login_required
def transition_document(document_id):
    """Body: {action} or {target}, plus optional comment."""
    data = json_body()
    comment = data.get("comment")
    if data.get("action"):
        result = documents.transition_document(document_id, data["action"], g.current_user,
                                               comment=comment)
    elif data.get("target"):
        result = documents.set_document_status(document_id, data["target"], g.current_user,
                                               comment=comment)
    else:
        return api_error(E.VALIDATION_REQUIRED, "action or target is required")
    return jsonify(result), 200


@workflow_bp.route("/documents/<int:document_id>/history", methods=["GET"])
@login_required
def document_history(document_id):
    rows = documents.get_document_history(document_id, g.current_user)
    return jsonify([r.to_dict() for r in rows]), 200


# ═════════════════════════════════════════════════════════════════════════
# Inspections & checklist
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/inspections", methods=["POST"])
@login_required
def schedule_inspection(project_id):
    """Body: {inspector_id?, scheduled_date?}"""
    data = json_body()
    inspection = checklists.schedule_inspection(
        project_id, g.current_user,
        inspector_id=data.get("inspector_id"),
        scheduled_date=parse_date(data.get("scheduled_date"), "scheduled_date"),
    )
    return jsonify(inspection.to_dict()), 201


@workflow_bp.route("/inspections/<int:inspection_id>/responses", methods=["GET"])
@login_required
def list_responses(inspection_id):
    rows = checklists.list_responses(inspection_id, g.current_user)
    return jsonify([r.to_dict() for r in rows]), 200


@workflow_bp.route("/inspections/<int:inspection_id>/responses", methods=["POST"])
@login_required
def submit_response(inspection_id):
    """Body: {item_id, response?, notes?, photo_url?, latitude?, longitude?}"""
    data = json_body()
    if not data.get("item_id"):
        return api_error(E.VALIDATION_REQUIRED, "item_id is required")
    row, created = checklists.submit_response(
        inspection_id, data["item_id"], g.current_user,
        response=data.get("response"),
        notes=data.get("notes", ""),
        photo_url=data.get("photo_url"),
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
    )
    return jsonify(row.to_dict()), 201 if created else 200


@workflow_bp.route("/checklist-responses/<int:response_id>/review", methods=["POST"])
@login_required
def review_response(response_id):
    """Body: {decision: approve|reject, notes?}"""
    data = json_body()
    decision = data.get("decision")
    if decision == "approve":
        row = checklists.approve_response(response_id, g.current_user)
    elif decision == "reject":
        row = checklists.reject_response(response_id, g.current_user, notes=data.get("notes"))
    else:
        return api_error(E.VALIDATION_INVALID, "decision must be 'approve' or 'reject'")
    return jsonify(row.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Payments
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/projects/<int:project_id>/payments", methods=["POST"])
@login_required
def submit_payment(project_id):
    """Body: {amount, proof_url?}"""
    data = json_body()
    if data.get("amount") is None:
        return api_error(E.VALIDATION_REQUIRED, "amount is required")
    payment = payments.submit_payment(project_id, g.current_user, amount=data["amount"],
                                      proof_url=data.get("proof_url", ""))
    return jsonify(payment.to_dict()), 201


@workflow_bp.route("/payments/<int:payment_id>/verify", methods=["POST"])
@login_required
def verify_payment(payment_id):
    payment = payments.verify_payment(payment_id, g.current_user, notes=json_body().get("notes"))
    return jsonify(payment.to_dict()), 200


@workflow_bp.route("/payments/<int:payment_id>/reject", methods=["POST"])
@login_required
def reject_payment(payment_id):
    payment = payments.reject_payment(payment_id, g.current_user, notes=json_body().get("notes"))
    return jsonify(payment.to_dict()), 200
