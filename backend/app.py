from datetime import datetime
from typing import Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
)
from flask_pymongo import PyMongo
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from accounts import AccountDirectory, serialize_account
from audit import AuditLog
from best_selling import BestSellingService, BestSellingStore, serialize_entry
from catalog import ProductCatalog, serialize_product
from config import Config
from contact import ContactMessages, ContactService, serialize_contact
from errors import FORBIDDEN, ServiceError, error_response
from mailer import ResendMailer
from otp import OtpService, OtpStore
from schemas import (
    OTP_CODE_LENGTH,
    BestSellingUpdateRequest,
    ContactRequest,
    EmailRequest,
    LoginRequest,
    ProductCreateRequest,
    ProductUpdateRequest,
    PromoteRequest,
    RegisterRequest,
    SalesAdjustRequest,
    VerifyOtpRequest,
    normalize_email,
    parse_payload,
)


def format_timestamp(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    return f"{value.isoformat()}Z"


def create_app(config_object=Config, database=None, mailer=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` and ``mailer`` default to a Flask-PyMongo connection and the
    Resend gateway; tests pass in-memory replacements.
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Honor proxy headers so generated links keep the public HTTPS origin.
    trusted_proxy_hops = max(0, int(app.config.get("TRUSTED_PROXY_HOPS", 1)))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        app.config.get("FRONTEND_URL", ""),
    ]
    for origin in (app.config.get("CORS_ALLOWED_ORIGINS") or "").split(","):
        trimmed = origin.strip()
        if trimmed:
            allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    JWTManager(app)
    if database is None:
        mongo = PyMongo(app)
        database = mongo.db

    if mailer is None:
        mailer = ResendMailer(
            app.config["RESEND_API_KEY"], app.config["OTP_SENDER_EMAIL"]
        )
        contact_mailer = ResendMailer(
            app.config["RESEND_API_KEY"], app.config["CONTACT_SENDER_EMAIL"]
        )
    else:
        contact_mailer = mailer

    accounts = AccountDirectory(
        database.users,
        app.config["DEFAULT_ADMIN_EMAIL"],
        hash_rounds=app.config["PASSWORD_HASH_ROUNDS"],
    )
    catalog = ProductCatalog(database.products)
    otp_store = OtpStore(database.otp_codes, hash_rounds=app.config["OTP_HASH_ROUNDS"])
    best_selling_store = BestSellingStore(database.best_selling)
    contact_messages = ContactMessages(database.contacts)
    audit_log = AuditLog(database.audit_logs, app.logger)

    otp_service = OtpService(
        otp_store,
        accounts,
        mailer,
        app.logger,
        subject=app.config["OTP_EMAIL_SUBJECT"],
        expiration_minutes=app.config["OTP_EXPIRATION_MINUTES"],
        resend_cooldown_seconds=app.config["OTP_RESEND_COOLDOWN_SECONDS"],
    )
    best_selling_service = BestSellingService(
        best_selling_store,
        catalog,
        app.logger,
        default_limit=app.config["BEST_SELLING_DEFAULT_LIMIT"],
        max_limit=app.config["BEST_SELLING_MAX_LIMIT"],
        featured_default_limit=app.config["FEATURED_DEFAULT_LIMIT"],
        featured_max_limit=app.config["FEATURED_MAX_LIMIT"],
    )
    contact_service = ContactService(
        contact_messages,
        contact_mailer,
        app.logger,
        notification_email=app.config["CONTACT_NOTIFICATION_EMAIL"],
    )

    for component in (
        accounts,
        catalog,
        otp_store,
        best_selling_store,
        contact_messages,
        audit_log,
    ):
        try:
            component.ensure_indexes()
        except Exception as exc:
            app.logger.warning(
                "Unable to ensure indexes for %s: %s", type(component).__name__, exc
            )

    # --- Helpers ---

    def require_admin_user():
        current_user = accounts.find_by_email(get_jwt_identity())
        if accounts.get_role(current_user) == "admin":
            return current_user, None

        return None, error_response(
            ServiceError(
                FORBIDDEN, "You need additional permissions to perform this action."
            )
        )

    def serialize_issuance(result: Dict, message: str) -> Dict[str, object]:
        return {
            "success": True,
            "message": message,
            "email": result["email"],
            "user_id": result["user_id"],
            "otp_length": OTP_CODE_LENGTH,
            "expires_in_seconds": result["expires_in_seconds"],
            "expires_at": format_timestamp(result["expires_at"]),
        }

    # --- ROUTES ---

    # OTP
    @app.route("/api/otp/create", methods=["POST"])
    @app.route("/api/otp/generate-otp", methods=["POST"])
    def create_otp():
        payload, error = parse_payload(EmailRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        result, error = otp_service.create(payload.email)
        if error:
            return error_response(error)

        return jsonify(
            serialize_issuance(result, f"OTP sent successfully to {payload.email}")
        )

    @app.route("/api/otp/resend", methods=["POST"])
    def resend_otp():
        payload, error = parse_payload(EmailRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        result, error = otp_service.resend(payload.email)
        if error:
            return error_response(error)

        return jsonify(
            serialize_issuance(result, f"OTP resent successfully to {payload.email}")
        )

    @app.route("/api/otp/verify", methods=["POST"])
    @app.route("/api/otp/verify-otp", methods=["POST"])
    def verify_otp():
        payload, error = parse_payload(VerifyOtpRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        result, error = otp_service.verify(payload.email, payload.otp)
        if error:
            return error_response(error)

        user = result["user"]
        audit_log.record(user["email"], "Verified email", {"user_id": user["id"]})

        return jsonify(
            {
                "success": True,
                "message": "OTP verified successfully",
                "verified": True,
                "verified_at": format_timestamp(result["verified_at"]),
                "user": user,
                "access_token": create_access_token(identity=user["email"]),
            }
        )

    # Accounts
    @app.route("/api/users", methods=["POST"])
    def register():
        payload, error = parse_payload(RegisterRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        user, error = accounts.register(payload.name, payload.email, payload.password)
        if error:
            return error_response(error)

        audit_log.record(
            payload.email, "Registered new account", {"user_id": str(user["_id"])}
        )

        return (
            jsonify(
                {
                    "message": "User registered successfully",
                    "requires_verification": True,
                    "user": serialize_account(user),
                }
            ),
            201,
        )

    @app.route("/api/login", methods=["POST"])
    def login():
        payload, error = parse_payload(LoginRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        user, error = accounts.authenticate(payload.email, payload.password)
        if error:
            return error_response(error)

        if not user.get("email_verified"):
            return error_response(
                ServiceError(
                    FORBIDDEN,
                    "Please verify your email before logging in.",
                    {"requires_verification": True},
                )
            )

        audit_log.record(
            payload.email,
            "Signed in",
            {"ip": request.headers.get("X-Forwarded-For", request.remote_addr)},
        )

        return jsonify(
            {
                "message": "Login successful",
                "access_token": create_access_token(identity=payload.email),
                "user": serialize_account(user),
            }
        )

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        product_docs = catalog.list(request.args.get("category"))
        return jsonify({"products": [serialize_product(doc) for doc in product_docs]})

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, error = catalog.find_by_id(product_id)
        if error:
            return error_response(error)
        return jsonify({"product": serialize_product(product_document)})

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload, error = parse_payload(
            ProductCreateRequest, request.get_json(silent=True)
        )
        if error:
            return error_response(error)

        creator_email = normalize_email(current_user.get("email"))
        product_document = catalog.create(payload, creator_email)

        audit_log.record(
            creator_email,
            "Created product",
            {"product_id": str(product_document["_id"]), "product_name": payload.name},
        )

        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(product_document),
                }
            ),
            201,
        )

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload, error = parse_payload(
            ProductUpdateRequest, request.get_json(silent=True)
        )
        if error:
            return error_response(error)

        editor_email = normalize_email(current_user.get("email"))
        product_document, error = catalog.update(product_id, payload, editor_email)
        if error:
            return error_response(error)

        audit_log.record(
            editor_email,
            "Updated product",
            {"product_id": product_id, "product_name": product_document.get("name")},
        )

        return jsonify(
            {
                "message": "Product updated successfully.",
                "product": serialize_product(product_document),
            }
        )

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        product_document, error = catalog.delete(product_id)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Deleted product",
            {"product_id": product_id, "product_name": product_document.get("name")},
        )

        return jsonify({"message": "Product deleted successfully."})

    # Contact
    @app.route("/api/contact", methods=["POST"])
    def create_contact():
        payload, error = parse_payload(ContactRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        result = contact_service.create(payload)

        return (
            jsonify(
                {
                    "message": "Contact message sent successfully! Check your email for confirmation.",
                    "confirmation_sent": result["confirmation_sent"],
                    "contact": serialize_contact(result["contact"]),
                }
            ),
            201,
        )

    @app.route("/api/contact", methods=["GET"])
    @jwt_required()
    def list_contacts():
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        contacts = contact_service.list(request.args.get("q"))
        return jsonify({"contacts": [serialize_contact(doc) for doc in contacts]})

    @app.route("/api/contact/<contact_id>", methods=["GET"])
    @jwt_required()
    def get_contact(contact_id: str):
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        contact_document, error = contact_service.get(contact_id)
        if error:
            return error_response(error)
        return jsonify({"contact": serialize_contact(contact_document)})

    @app.route("/api/contact/<contact_id>", methods=["DELETE"])
    @jwt_required()
    def delete_contact(contact_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        contact_document, error = contact_service.delete(contact_id)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Deleted contact message",
            {"contact_id": contact_id, "sender": contact_document.get("email")},
        )

        return jsonify({"message": "Contact message deleted successfully."})

    # Best selling
    @app.route("/api/bestselling", methods=["GET"])
    def list_best_selling():
        entries = best_selling_service.list(
            limit=request.args.get("limit"),
            category=request.args.get("category"),
            featured=request.args.get("featured"),
        )
        return jsonify({"best_selling": [serialize_entry(entry) for entry in entries]})

    @app.route("/api/bestselling/featured", methods=["GET"])
    def list_featured_best_selling():
        entries = best_selling_service.featured(limit=request.args.get("limit"))
        return jsonify({"best_selling": [serialize_entry(entry) for entry in entries]})

    @app.route("/api/bestselling", methods=["POST"])
    @jwt_required()
    def promote_best_selling():
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload, error = parse_payload(PromoteRequest, request.get_json(silent=True))
        if error:
            return error_response(error)

        entry, error = best_selling_service.promote(payload)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Promoted product to best selling",
            {"entry_id": str(entry["_id"]), "product_id": str(entry["product_id"])},
        )

        return (
            jsonify(
                {
                    "message": "Product added to best selling collection.",
                    "best_selling": serialize_entry(entry),
                }
            ),
            201,
        )

    @app.route("/api/bestselling/<entry_id>", methods=["PUT"])
    @jwt_required()
    def update_best_selling(entry_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload, error = parse_payload(
            BestSellingUpdateRequest, request.get_json(silent=True)
        )
        if error:
            return error_response(error)

        entry, error = best_selling_service.update(entry_id, payload)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Updated best selling entry",
            {"entry_id": entry_id},
        )

        return jsonify(
            {
                "message": "Best selling product updated.",
                "best_selling": serialize_entry(entry),
            }
        )

    @app.route("/api/bestselling/<entry_id>/sales", methods=["PATCH"])
    @jwt_required()
    def adjust_best_selling_sales(entry_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload, error = parse_payload(
            SalesAdjustRequest, request.get_json(silent=True) or {}
        )
        if error:
            return error_response(error)

        entry, error = best_selling_service.adjust_sales(entry_id, payload.increment)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Adjusted best selling sales count",
            {"entry_id": entry_id, "increment": payload.increment},
        )

        return jsonify(
            {
                "message": "Sales count updated.",
                "best_selling": serialize_entry(entry),
            }
        )

    @app.route("/api/bestselling/<entry_id>", methods=["DELETE"])
    @jwt_required()
    def remove_best_selling(entry_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        entry, error = best_selling_service.remove(entry_id)
        if error:
            return error_response(error)

        audit_log.record(
            current_user.get("email"),
            "Removed best selling entry",
            {"entry_id": entry_id, "product_name": entry.get("name", "")},
        )

        return jsonify(
            {"message": "Product removed from best selling collection successfully."}
        )

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"message": exc.description, "error": exc.name}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error"}), 500

    return app
