"""
HTTP front end for batch screening.

License: Apache License 2.0

Routes:
  POST /search/batch   multipart upload (field "csvFile") plus optional form
                       fields threshold, min-match, sdn-type, request-id;
                       answers with the screened CSV as a file download
  GET  /ping           liveness
"""

from __future__ import annotations

import functools
import logging
from typing import Optional

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.utils import secure_filename

from batchsearch import (
    BatchError,
    ConfigError,
    InputError,
    ScreeningConfig,
    WatchmanClient,
    decode_upload,
    dispatch,
    parse_rows,
    search_by_name,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 128 << 20
DEFAULT_MAX_ROWS = 10000
TRUNCATED_HEADER = "X-Batch-Truncated"
DEFAULT_DOWNLOAD_NAME = "batchsearch.csv"

batch_bp = Blueprint("batch", __name__)


@batch_bp.route("/ping")
def ping():
    return "PONG"


@batch_bp.route("/search/batch", methods=["POST"])
def search_batch():
    """
    Screen an uploaded CSV (or XLSX). Rows beyond MAX_ROWS are dropped and
    the count reported in the X-Batch-Truncated header.
    """
    if "csvFile" not in request.files:
        return jsonify({"error": "No file provided"}), 400
    upload = request.files["csvFile"]

    try:
        config = ScreeningConfig.from_form(request.form, base=current_app.config["SCREENING_CONFIG"])
        raw = decode_upload(upload.filename or "", upload.read())
    except (ConfigError, InputError) as e:
        return jsonify({"error": str(e)}), 400

    header, rows = parse_rows(raw)
    max_rows = current_app.config["MAX_ROWS"]
    dropped = max(0, len(rows) - max_rows)
    if dropped:
        logger.warning("Upload %s has %d rows, screening the first %d", upload.filename, len(rows), max_rows)
        rows = rows[:max_rows]

    client: WatchmanClient = current_app.extensions["watchman"]
    try:
        batch = dispatch(header, rows, functools.partial(search_by_name, client), config)
    except BatchError as e:
        logger.error("Batch for %s failed: %s", upload.filename, e)
        return jsonify({"error": "Unable to process input"}), 500

    if not batch.ok:
        return jsonify({"error": f"All {batch.total} searches failed", "failed": batch.failed}), 502

    output = batch.text
    filename = secure_filename(upload.filename or "") or DEFAULT_DOWNLOAD_NAME
    response = Response(output, mimetype="text/csv")
    response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    response.headers["Content-Length"] = str(len(output.encode("utf-8")))
    if dropped:
        response.headers[TRUNCATED_HEADER] = str(dropped)
    logger.info("Screened %s: %d/%d rows succeeded", filename, batch.succeeded, batch.total)
    return response


def _too_large(_error):
    return jsonify({"error": f"File exceeds {MAX_UPLOAD_BYTES >> 20} MB limit"}), 413


def create_app(
    config: Optional[ScreeningConfig] = None,
    *,
    client: Optional[WatchmanClient] = None,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> Flask:
    """
    The config is the per-server baseline; each upload may override
    threshold, min-match, sdn-type and request-id through its form fields.
    """
    config = (config or ScreeningConfig()).validate()
    if max_rows < 1:
        raise ConfigError(f"max_rows must be >= 1 (got {max_rows})")

    app = Flask(__name__)
    CORS(app)
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES
    app.config["SCREENING_CONFIG"] = config
    app.config["MAX_ROWS"] = max_rows
    app.extensions["watchman"] = client or WatchmanClient.from_config(config)
    app.register_blueprint(batch_bp)
    app.register_error_handler(413, _too_large)
    return app
