"""
HTTP API.

The upstream credential service authenticates the caller and forwards the
actor id in the X-Actor-Id header; every route resolves it to an Actor
before touching the engine.
"""

from functools import wraps
from typing import Optional

from flask import Blueprint, Flask, current_app, g, jsonify, request

from .access import resolve_actor
from .collaborators import Notifier, PointsLedger
from .config import Settings
from .database import init_database
from .errors import ValidationError, WorkflowError
from .logger import get_logger
from .moderation import ModerationService
from .saga import CreationSaga
from .store import RelationStore

logger = get_logger()

ACTOR_HEADER = "X-Actor-Id"

api_bp = Blueprint("api", __name__)


class Services:
    def __init__(self, store, notifier: Notifier, points: PointsLedger, restricted_category: str):
        self.store = store
        self.moderation = ModerationService(store, notifier, points, restricted_category)
        self.saga = CreationSaga(store, notifier, points, restricted_category)


def services() -> Services:
    return current_app.extensions["venuedesk"]


def actor_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.actor = resolve_actor(services().store, request.headers.get(ACTOR_HEADER))
        return f(*args, **kwargs)
    return decorated_function


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@api_bp.errorhandler(WorkflowError)
def handle_workflow_error(error: WorkflowError):
    if error.http_status >= 500:
        logger.error("Request failed", path=request.path, code=error.code, error=str(error))
    else:
        logger.info("Request rejected", path=request.path, code=error.code, error=str(error))
    return jsonify(error.to_dict()), error.http_status


# Workers

@api_bp.route("/workers", methods=["POST"])
@actor_required
def create_worker():
    worker = services().saga.create_worker(json_body(), g.actor)
    return jsonify({"worker": worker}), 201


@api_bp.route("/workers/<worker_id>", methods=["GET"])
@actor_required
def get_worker(worker_id):
    return jsonify(services().moderation.get_worker_detail(worker_id, g.actor))


@api_bp.route("/workers/<worker_id>", methods=["PATCH"])
@actor_required
def update_worker(worker_id):
    worker = services().moderation.update_worker(g.actor, worker_id, json_body())
    return jsonify({"worker": worker})


# Venues

@api_bp.route("/venues", methods=["POST"])
@actor_required
def create_venue():
    venue = services().saga.create_venue(json_body(), g.actor)
    return jsonify({"venue": venue}), 201


@api_bp.route("/venues/<venue_id>", methods=["PATCH"])
@actor_required
def update_venue(venue_id):
    venue = services().moderation.update_venue(g.actor, venue_id, json_body())
    return jsonify({"venue": venue})


# Edit proposals

@api_bp.route("/proposals", methods=["POST"])
@actor_required
def submit_proposal():
    data = json_body()
    for field in ("item_type", "item_id", "proposed_changes"):
        if not data.get(field):
            raise ValidationError(f"Missing required field: {field}")
    if not isinstance(data["proposed_changes"], dict):
        raise ValidationError("Field 'proposed_changes' must be an object")

    proposal, auto_approved = services().moderation.submit_proposal(
        g.actor,
        data["item_type"],
        data["item_id"],
        data["proposed_changes"],
        data.get("current_values"),
    )
    return jsonify({"proposal": proposal, "auto_approved": auto_approved}), 201


@api_bp.route("/proposals", methods=["GET"])
@actor_required
def list_proposals():
    proposals = services().moderation.list_proposals(
        g.actor,
        status=request.args.get("status"),
        item_type=request.args.get("item_type"),
    )
    return jsonify({"proposals": proposals})


@api_bp.route("/proposals/mine", methods=["GET"])
@actor_required
def list_my_proposals():
    return jsonify({"proposals": services().moderation.list_my_proposals(g.actor)})


@api_bp.route("/proposals/<proposal_id>/approve", methods=["POST"])
@actor_required
def approve_proposal(proposal_id):
    notes = (request.get_json(silent=True) or {}).get("moderator_notes")
    services().moderation.approve(proposal_id, g.actor, notes)
    return jsonify({"success": True})


@api_bp.route("/proposals/<proposal_id>/reject", methods=["POST"])
@actor_required
def reject_proposal(proposal_id):
    notes = (request.get_json(silent=True) or {}).get("moderator_notes")
    services().moderation.reject(proposal_id, g.actor, notes)
    return jsonify({"success": True})


# Moderation queue

@api_bp.route("/moderation/queue", methods=["GET"])
@actor_required
def list_queue():
    entries = services().moderation.list_queue(
        g.actor,
        status=request.args.get("status", "pending"),
        item_type=request.args.get("item_type"),
    )
    return jsonify({"entries": entries})


@api_bp.route("/moderation/queue/<entry_id>/<action>", methods=["POST"])
@actor_required
def review_queue_entry(entry_id, action):
    decisions = {"approve": "approved", "reject": "rejected"}
    if action not in decisions:
        raise ValidationError(f"Unknown review action: {action}")
    notes = (request.get_json(silent=True) or {}).get("moderator_notes")
    entry = services().moderation.review_queue_entry(entry_id, g.actor, decisions[action], notes)
    return jsonify({"entry": entry})


def create_app(
    store: Optional[RelationStore] = None,
    notifier: Optional[Notifier] = None,
    points: Optional[PointsLedger] = None,
    settings: Optional[Settings] = None,
) -> Flask:
    """
    Application factory.

    Without a store, one is built from settings (or the environment) and
    its database initialized.
    """
    settings = settings or Settings.from_env()
    if store is None:
        init_database(settings.db_path)
        store = RelationStore.from_settings(settings)

    app = Flask(__name__)
    app.extensions["venuedesk"] = Services(
        store,
        notifier or Notifier(),
        points or PointsLedger(),
        settings.restricted_category,
    )
    app.register_blueprint(api_bp)
    logger.info("API ready", db_path=str(store.db_path))
    return app
