"""
SDCVault Web API
================
Local Flask backend over the SDC format and e-signature services.
"""

import base64
import binascii
import io
import os
from datetime import datetime, timezone

from flask import Flask, current_app, jsonify, request, send_file
from werkzeug.utils import secure_filename

from sdcvault.core.config import SdcConfig
from sdcvault.core.errors import (
    AccessPolicyError,
    EnvelopeNotFoundError,
    FormatError,
    KeyDerivationTimeoutError,
    SDCError,
    SignatureNotFoundError,
    StorageError,
)
from sdcvault.core.logging import get_secure_logger
from sdcvault.core.qr import decode as decode_qr
from sdcvault.core.sdc.service import DocumentInfo, SDCExportOptions, SDCFormatService
from sdcvault.core.signature import ESignatureService, SignatureOptions, SignerInfo, SubjectInfo
from sdcvault.core.signature.certificates import parse_certificate
from sdcvault.db import SQLiteStore
from sdcvault.security import SecurityMonitor, TamperAwareAuditLog

logger = get_secure_logger("sdcvault.web")


# ============================================================
# HELPERS
# ============================================================

def _services():
    return current_app.extensions["sdcvault"]


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _b64_field(data, name):
    value = data.get(name)
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"{name} is not valid base64") from e


def _form_bool(value, default):
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_expiry(value):
    if not value:
        return None
    expires = datetime.fromisoformat(value)
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires


def _load_envelope(file_id):
    envelope = _services()["sdc"].get_sdc_file(file_id)
    if envelope is None:
        raise EnvelopeNotFoundError()
    return envelope


def _envelope_summary(envelope):
    return {
        "id": envelope.id,
        "name": envelope.name,
        "original_format": envelope.original_format,
        "created_at": envelope.created_at.isoformat(),
        "last_modified": envelope.last_modified.isoformat(),
        "public_key": envelope.public_key,
        "size": len(envelope.encrypted_data),
        "metadata": envelope.metadata.to_dict(),
    }


def _signature_options(data):
    raw = data.get("options") or {}
    if not isinstance(raw, dict):
        raise ValueError("options must be an object")
    defaults = _services()["signatures"].default_options()
    return SignatureOptions(
        algorithm=raw.get("algorithm", defaults.algorithm),
        hash_algorithm=raw.get("hash_algorithm", defaults.hash_algorithm),
        key_size=int(raw.get("key_size", defaults.key_size)),
        include_timestamp=bool(raw.get("include_timestamp", True)),
        include_certificate_chain=bool(raw.get("include_certificate_chain", True)),
    )


def _load_signature(signature_id):
    record = _services()["signatures"].get_signature(signature_id)
    if record is None:
        raise SignatureNotFoundError()
    return record


# ============================================================
# APP FACTORY
# ============================================================

def create_app(config=None, store=None, audit=None, monitor=None, clock=None):
    config = config or SdcConfig.load()
    if store is None or audit is None:
        config.ensure_directories()
    store = store or SQLiteStore(config.paths.database_path)
    audit = audit or TamperAwareAuditLog(config.paths.audit_log_path)
    monitor = monitor or SecurityMonitor(audit=audit)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024

    app.extensions["sdcvault"] = {
        "config": config,
        "monitor": monitor,
        "sdc": SDCFormatService(store, config=config, audit=audit, monitor=monitor, clock=clock),
        "signatures": ESignatureService(store, config=config, audit=audit, clock=clock),
    }

    _register_cors(app)
    _register_error_handlers(app)
    _register_routes(app)
    return app


# CORS - no flask-cors library, just headers
def _register_cors(app):
    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, DELETE, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        response.headers['Access-Control-Max-Age'] = '3600'
        return response

    @app.route('/api/<path:path>', methods=['OPTIONS'])
    def handle_options(path):
        return app.make_response('')


def _register_error_handlers(app):
    @app.errorhandler(EnvelopeNotFoundError)
    @app.errorhandler(SignatureNotFoundError)
    def not_found(error):
        return jsonify({"error": error.user_message}), 404

    @app.errorhandler(FormatError)
    def bad_format(error):
        return jsonify({"error": error.user_message}), 400

    @app.errorhandler(StorageError)
    @app.errorhandler(KeyDerivationTimeoutError)
    def unavailable(error):
        logger.error("Service unavailable: %s", type(error).__name__)
        return jsonify({"error": error.user_message}), 503

    @app.errorhandler(SDCError)
    def sdc_error(error):
        return jsonify({"error": error.user_message}), 400

    @app.errorhandler(ValueError)
    def invalid_input(error):
        return jsonify({"error": str(error)}), 400


# ============================================================
# ROUTES
# ============================================================

def _register_routes(app):

    @app.route("/api/health")
    def health():
        state = _services()["monitor"].get_network_state()
        return jsonify({
            "status": "healthy",
            "version": _services()["config"].app.version,
            "offline_mode": state.is_offline_mode,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    # ------------------------------------------------------------
    # SDC FILES
    # ------------------------------------------------------------

    @app.route("/api/sdc", methods=["POST"])
    def create_sdc():
        if 'file' not in request.files:
            return jsonify({"error": "No file provided"}), 400

        upload = request.files['file']
        original_filename = secure_filename(upload.filename or "") or "document"
        form = request.form

        max_views = form.get("max_views")
        tags = [t for t in (form.get("tags") or "").split(",") if t.strip()]
        options = SDCExportOptions(
            encryption_enabled=_form_bool(form.get("encrypt"), True),
            password=form.get("password") or None,
            expires_at=_parse_expiry(form.get("expires_at")),
            max_views=int(max_views) if max_views else None,
            key_derivation=form.get("key_derivation") or None,
        )
        info = DocumentInfo(
            title=form.get("title") or None,
            author=form.get("author") or "Anonymous",
            description=form.get("description") or "",
            tags=tuple(tags),
        )

        created = _services()["sdc"].create_sdc_file(upload.read(), original_filename, info, options)

        return jsonify({
            "message": "SDC file created",
            "file": _envelope_summary(created.envelope),
            "private_key": created.private_key,
        }), 201

    @app.route("/api/sdc/import", methods=["POST"])
    def import_sdc():
        envelope = _services()["sdc"].import_sdc_file(request.get_data(), persist=True)
        return jsonify({"message": "SDC file imported", "file": _envelope_summary(envelope)}), 201

    @app.route("/api/sdc/<file_id>", methods=["GET"])
    def get_sdc(file_id):
        return jsonify({"file": _envelope_summary(_load_envelope(file_id))})

    @app.route("/api/sdc/<file_id>/metadata", methods=["PUT"])
    def update_sdc_metadata(file_id):
        data = _json_body()
        tags = data.get("tags")
        envelope = _services()["sdc"].update_metadata(
            file_id,
            name=data.get("name"),
            title=data.get("title"),
            author=data.get("author"),
            description=data.get("description"),
            tags=tags if isinstance(tags, list) else None,
        )
        return jsonify({"file": _envelope_summary(envelope)})

    @app.route("/api/sdc/<file_id>/export", methods=["GET"])
    def export_sdc(file_id):
        envelope = _load_envelope(file_id)
        return send_file(
            io.BytesIO(_services()["sdc"].export_sdc_file(envelope)),
            mimetype="application/octet-stream",
            download_name=envelope.name,
            as_attachment=True,
        )

    @app.route("/api/sdc/<file_id>/read", methods=["POST"])
    def read_sdc(file_id):
        data = _json_body()
        envelope = _load_envelope(file_id)

        result = _services()["sdc"].read_sdc_file(
            envelope,
            private_key=data.get("private_key") or None,
            password=data.get("password") or None,
        )

        if not result.success:
            status = 403 if isinstance(result.exception, AccessPolicyError) else 401
            return jsonify({"error": result.error}), status

        return jsonify({
            "message": "File decrypted successfully",
            "data": base64.b64encode(result.data).decode("ascii"),
            "original_format": result.original_format,
            "views_remaining": result.views_remaining,
            "metadata": result.metadata.to_dict(),
        })

    @app.route("/api/sdc/<file_id>/qr", methods=["GET"])
    def sdc_qr(file_id):
        envelope = _load_envelope(file_id)
        result = _services()["sdc"].generate_qr_code(envelope, request.args.get("base_url"))
        if not result.success:
            return jsonify({"error": result.error}), 500
        return jsonify({
            "descriptor": result.descriptor.to_dict(),
            "payload": result.payload,
            "svg": result.svg,
        })

    @app.route("/api/qr/parse", methods=["POST"])
    def parse_qr():
        parsed = decode_qr(_json_body().get("data"))
        return jsonify({
            "valid": parsed.valid,
            "data": parsed.data.to_dict() if parsed.data else None,
            "error": parsed.error,
        })

    # ------------------------------------------------------------
    # CERTIFICATES & SIGNATURES
    # ------------------------------------------------------------

    @app.route("/api/certificates", methods=["POST"])
    def create_certificate():
        data = _json_body()
        subject = data.get("subject") or {}
        if not isinstance(subject, dict) or not subject.get("common_name"):
            return jsonify({"error": "subject.common_name is required"}), 400

        subject_info = SubjectInfo(
            common_name=subject["common_name"],
            organization=subject.get("organization"),
            organizational_unit=subject.get("organizational_unit"),
            country=subject.get("country"),
            email=subject.get("email"),
        )
        options = _signature_options(data)
        service = _services()["signatures"]

        if data.get("issuer_certificate"):
            generated = service.issue_certificate(
                subject_info,
                data["issuer_certificate"],
                data.get("issuer_private_key", ""),
                options,
            )
        else:
            generated = service.generate_certificate(subject_info, options)

        info = parse_certificate(generated.certificate)
        return jsonify({
            "certificate": generated.certificate,
            "private_key": generated.private_key,
            "public_key": generated.public_key,
            "fingerprint": info.fingerprint,
            "valid_to": info.valid_to.isoformat(),
        }), 201

    @app.route("/api/signatures", methods=["POST"])
    def create_signature():
        data = _json_body()
        signer = data.get("signer") or {}
        if not isinstance(signer, dict):
            return jsonify({"error": "signer must be an object"}), 400

        signer_info = SignerInfo(
            name=signer.get("name", ""),
            email=signer.get("email", ""),
            certificate=signer.get("certificate", ""),
            private_key=signer.get("private_key", ""),
            chain=tuple(signer.get("chain") or ()),
        )
        result = _services()["signatures"].sign_document(
            data.get("document_id", ""),
            _b64_field(data, "data"),
            signer_info,
            _signature_options(data),
        )
        if not result.success:
            return jsonify({"error": result.error}), 400
        return jsonify({"signature": result.signature.to_dict()}), 201

    @app.route("/api/signatures/<signature_id>/verify", methods=["POST"])
    def verify_signature(signature_id):
        record = _load_signature(signature_id)
        result = _services()["signatures"].verify_signature(record, _b64_field(_json_body(), "data"))
        return jsonify({
            "valid": result.valid,
            "details": result.details.to_dict(),
            "error": result.error,
        })

    @app.route("/api/signatures/<signature_id>/revoke", methods=["POST"])
    def revoke_signature(signature_id):
        reason = _json_body().get("reason") or "unspecified"
        record = _services()["signatures"].revoke_signature(signature_id, reason)
        return jsonify({"signature": record.to_dict()})

    @app.route("/api/signatures/<signature_id>/pdf", methods=["GET"])
    def signature_pdf_annotation(signature_id):
        record = _load_signature(signature_id)
        return jsonify(ESignatureService.export_signature_for_pdf(record))

    @app.route("/api/documents/<document_id>/signatures", methods=["GET"])
    def document_signatures(document_id):
        signatures = _services()["signatures"].get_document_signatures(document_id)
        return jsonify({"signatures": [s.to_dict() for s in signatures]})


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    create_app().run(host="127.0.0.1", port=int(os.environ.get("PORT", 5000)))
