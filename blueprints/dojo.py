"""Virtual dojo (pet) routes: lottery spin, feeding, and state."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask_login import login_required

import progression
from db_stores import PetStoreDB
from extensions import limiter
from helpers import json_body, resolve_student_id
from outcomes import ValidationError
from pet_economy import WHEEL_ITEMS

bp = Blueprint("dojo", __name__)


@bp.route("/api/dojo")
@login_required
def api_dojo_state():
    student_id = resolve_student_id()
    pet = PetStoreDB(student_id)
    return jsonify({
        "pet": pet.state(),
        "inventory": pet.inventory(),
        "spin_cost": current_app.config["SPIN_COST"],
        "wheel": [item.to_dict() | {"weight": item.weight} for item in WHEEL_ITEMS],
    })


@bp.route("/api/dojo/spin", methods=["POST"])
@login_required
@limiter.limit("20 per minute")
def api_spin():
    data = json_body()
    return jsonify(progression.spin_lottery(resolve_student_id(data)))


@bp.route("/api/dojo/feed", methods=["POST"])
@login_required
def api_feed():
    data = json_body()
    item_name = data.get("item_name") or data.get("item_id")
    if not item_name:
        raise ValidationError("item_name is required.", code="missing_item")
    return jsonify(progression.feed_pet(resolve_student_id(data), str(item_name)))
