# Overview: Customer records, customer trash, bulk import and the sequential customer code allocator.

"""
Customer service

Customer codes are fixed-width, zero-padded sequence numbers ("00042").

- New customers get max(existing numeric code) + 1. The max is read without
  a global lock; concurrent allocations can issue the same code, which the
  backfill repairs.
- generate_customer_codes (admin only) backfills codes across orders and
  customers so every distinct identity (see backoffice.identity) has one
  code, and every record of that identity carries it.

Customer edits never touch the snapshots stored on orders.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer, Order
from ..models.customers import CONTACT_FIELDS
from backoffice.identity import customer_identity_key, identity_key_for, normalize_cpf
from backoffice.time_utils import utcnow
from backoffice.validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    validate_payload,
)
from .audit_service import log_action
from .auth_service import ROLE_ADMIN, ROLE_MANAGER, ensure_role, hash_password
from .change_feed import ENTITY_CUSTOMER, ENTITY_ORDER, publish_delete, publish_upsert
from .concurrency import lock_for_update, run_with_retry


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "cpf", *CONTACT_FIELDS,
        "seller_id", "seller_name",
        "blocked", "blocked_reason",
    },
    required_on_create={"name"},
)

# Identity key of a record with no cpf, name or phone
_BLANK_IDENTITY = customer_identity_key(None, None, None)


class CustomerError(Exception):
    """Raised for customer operation errors."""
    pass


# =============================================================================
# CODES
# =============================================================================

def code_width() -> int:
    return int(current_app.config.get("CUSTOMER_CODE_WIDTH", 5))


def format_customer_code(number: int) -> str:
    return str(number).zfill(code_width())


def parse_code_number(code) -> int | None:
    if code is None:
        return None
    text = str(code).strip()
    if not text.isdigit():
        return None
    return int(text)


def _max_code_number(codes) -> int:
    numbers = [n for n in (parse_code_number(c) for c in codes) if n is not None]
    return max(numbers, default=0)


def allocate_customer_code() -> str:
    """Next code after the highest numeric code of any customer (trashed included)."""
    codes = [row[0] for row in db.session.query(Customer.code).filter(Customer.code.isnot(None)).all()]
    return format_customer_code(_max_code_number(codes) + 1)


def generate_customer_codes(actor) -> dict:
    """
    Backfill customer codes across every order snapshot and customer record.

    Existing codes win per identity (orders by creation, then customers by
    id; first occurrence kept). Identities without a code are sorted by
    identity key and numbered from the highest known code + 1.

    Returns {"new_customers", "updated_orders", "updated_customers"}.
    Running it again without new data updates nothing.
    """
    ensure_role(actor, ROLE_ADMIN)

    def _op():
        orders = lock_for_update(
            db.session.query(Order).order_by(Order.created_at.asc(), Order.id.asc())
        ).all()
        customers = lock_for_update(
            db.session.query(Customer).order_by(Customer.id.asc())
        ).all()

        code_by_identity: dict[str, str] = {}
        known_codes: list[str] = []
        identities: set[str] = set()

        def _collect(key: str, code):
            if key == _BLANK_IDENTITY:
                return
            identities.add(key)
            if code:
                known_codes.append(code)
                code_by_identity.setdefault(key, code)

        for order in orders:
            snapshot = order.customer or {}
            _collect(identity_key_for(snapshot), snapshot.get("code"))
        for customer in customers:
            _collect(identity_key_for(customer), customer.code)

        next_number = _max_code_number(known_codes) + 1
        missing = sorted(identities - set(code_by_identity))
        for offset, key in enumerate(missing):
            code_by_identity[key] = format_customer_code(next_number + offset)

        changed_orders = []
        for order in orders:
            snapshot = order.customer or {}
            code = code_by_identity.get(identity_key_for(snapshot))
            if code is not None and snapshot.get("code") != code:
                # Reassign so the JSON column is flagged dirty
                order.customer = {**snapshot, "code": code}
                changed_orders.append(order)

        changed_customers = []
        for customer in customers:
            code = code_by_identity.get(identity_key_for(customer))
            if code is not None and customer.code != code:
                customer.code = code
                changed_customers.append(customer)

        db.session.commit()
        return len(missing), changed_orders, changed_customers

    new_count, changed_orders, changed_customers = run_with_retry(_op)

    for order in changed_orders:
        publish_upsert(ENTITY_ORDER, order)
    for customer in changed_customers:
        publish_upsert(ENTITY_CUSTOMER, customer)

    result = {
        "new_customers": new_count,
        "updated_orders": len(changed_orders),
        "updated_customers": len(changed_customers),
    }
    log_action(
        "Códigos Gerados",
        f"{new_count} novos códigos; {len(changed_orders)} pedidos e {len(changed_customers)} clientes atualizados.",
        actor,
    )
    return result


# =============================================================================
# LOOKUPS
# =============================================================================

def get_customer(customer_id: int) -> Customer | None:
    return db.session.get(Customer, customer_id)


def list_customers(*, search: str | None = None, include_deleted: bool = False) -> list[Customer]:
    query = db.session.query(Customer)
    if not include_deleted:
        query = query.filter(Customer.deleted_at.is_(None))
    if search:
        term = f"%{search.strip()}%"
        digits = normalize_cpf(search)
        clauses = [Customer.name.ilike(term), Customer.code.ilike(term), Customer.phone.ilike(term)]
        if digits:
            clauses.append(Customer.cpf.like(f"%{digits}%"))
        query = query.filter(db.or_(*clauses))
    return query.order_by(Customer.name.asc()).all()


def find_customer_by_cpf(cpf) -> tuple[Customer | None, str | None]:
    """Returns (customer, "active" | "trash") or (None, None)."""
    digits = normalize_cpf(cpf)
    if len(digits) != 11:
        return None, None
    customer = db.session.query(Customer).filter_by(cpf=digits).first()
    if customer is None:
        return None, None
    return customer, ("trash" if customer.deleted_at else "active")


def find_customer_by_identity(key: str) -> Customer | None:
    """Customer whose identity key equals key (cpf match, else name-phone among cpf-less rows)."""
    if len(key) == 11 and key.isdigit():
        return db.session.query(Customer).filter_by(cpf=key).first()
    candidates = db.session.query(Customer).filter(Customer.cpf.is_(None)).order_by(Customer.id.asc()).all()
    for customer in candidates:
        if identity_key_for(customer) == key:
            return customer
    return None


# =============================================================================
# CRUD
# =============================================================================

def _clean_cpf(patch: dict) -> None:
    if "cpf" not in patch:
        return
    raw = patch["cpf"]
    if raw is None or raw == "":
        patch["cpf"] = None
        return
    digits = normalize_cpf(raw)
    if len(digits) != 11:
        raise ValidationError("CPF must have exactly 11 digits")
    patch["cpf"] = digits


def _with_clean_cpf(data):
    """Copy of a client payload with the CPF reduced to digits, so the column length check sees 11 characters."""
    if not isinstance(data, dict):
        return data
    payload = dict(data)
    _clean_cpf(payload)
    return payload


def _ensure_cpf_available(cpf: str | None, *, exclude_id: int | None = None) -> None:
    if not cpf:
        return
    query = db.session.query(Customer).filter(Customer.cpf == cpf)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    existing = query.first()
    if existing is not None:
        where = "in trash" if existing.deleted_at else "already registered"
        raise ConflictError(f"CPF {cpf} {where} (customer {existing.code or existing.id})")


def initial_password_hash(cpf: str | None) -> str | None:
    """Legacy convenience: customers log in with the first six CPF digits."""
    if not cpf:
        return None
    return hash_password(cpf[:6])


def build_customer(patch: dict, *, code: str | None = None) -> Customer:
    """Create (not commit) a customer from a validated patch."""
    customer = Customer(**patch)
    customer.code = code or allocate_customer_code()
    customer.password_hash = initial_password_hash(customer.cpf)
    customer.created_at = utcnow()
    db.session.add(customer)
    return customer


def add_customer(data: dict, actor=None) -> Customer:
    patch = validate_payload(model=Customer, payload=_with_clean_cpf(data), policy=CUSTOMER_POLICY, partial=False)
    _ensure_cpf_available(patch.get("cpf"))

    customer = build_customer(patch)
    db.session.commit()

    publish_upsert(ENTITY_CUSTOMER, customer)
    log_action("Cliente Adicionado", f"Cliente {customer.name} ({customer.code}) adicionado.", actor)
    return customer


def update_customer(customer_id: int, data: dict, actor=None) -> Customer | None:
    patch = validate_payload(model=Customer, payload=_with_clean_cpf(data), policy=CUSTOMER_POLICY, partial=True)

    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            return None
        if "cpf" in patch and patch["cpf"] != customer.cpf:
            _ensure_cpf_available(patch["cpf"], exclude_id=customer.id)
        for key, value in patch.items():
            setattr(customer, key, value)
        db.session.commit()
        return customer

    customer = run_with_retry(_op)
    if customer is None:
        return None

    publish_upsert(ENTITY_CUSTOMER, customer)
    log_action("Cliente Atualizado", f"Cliente {customer.name} atualizado.", actor)
    return customer


def delete_customer(customer_id: int, actor=None) -> Customer | None:
    """Move a customer to the customer trash."""
    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None or customer.deleted_at is not None:
            return customer
        customer.deleted_at = utcnow()
        db.session.commit()
        return customer

    customer = run_with_retry(_op)
    if customer is None:
        return None

    publish_upsert(ENTITY_CUSTOMER, customer)
    log_action("Cliente Excluído", f"Cliente {customer.name} movido para a lixeira.", actor)
    return customer


# =============================================================================
# TRASH
# =============================================================================

def list_customer_trash(actor) -> list[Customer]:
    ensure_role(actor, ROLE_ADMIN, ROLE_MANAGER)
    return (
        db.session.query(Customer)
        .filter(Customer.deleted_at.isnot(None))
        .order_by(Customer.deleted_at.desc())
        .all()
    )


def restore_customer(customer_id: int, actor) -> Customer | None:
    ensure_role(actor, ROLE_ADMIN, ROLE_MANAGER)

    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None or customer.deleted_at is None:
            return None
        customer.deleted_at = None
        db.session.commit()
        return customer

    customer = run_with_retry(_op)
    if customer is None:
        return None

    publish_upsert(ENTITY_CUSTOMER, customer)
    log_action("Cliente Restaurado", f"Cliente {customer.name} restaurado da lixeira.", actor)
    return customer


def purge_customer(customer_id: int, actor) -> bool:
    """Permanently delete a trashed customer. Orders keep their snapshots."""
    ensure_role(actor, ROLE_ADMIN, ROLE_MANAGER)

    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None or customer.deleted_at is None:
            return None
        name = customer.name
        db.session.query(Order).filter(Order.customer_id == customer.id).update(
            {Order.customer_id: None}, synchronize_session=False
        )
        db.session.delete(customer)
        db.session.commit()
        return name

    name = run_with_retry(_op)
    if name is None:
        return False

    publish_delete(ENTITY_CUSTOMER, customer_id)
    log_action("Cliente Excluído Permanentemente", f"Cliente {name} apagado.", actor)
    return True


# =============================================================================
# IMPORT
# =============================================================================

def import_customers(rows: list[dict], actor) -> dict:
    """
    Create customers from already-parsed rows (cpf, name, phone, ...).

    Rows without an 11-digit CPF, rows whose CPF already exists (active or
    trashed) and repeated CPFs within the batch are skipped.
    """
    ensure_role(actor, ROLE_ADMIN)
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list")

    existing = {row[0] for row in db.session.query(Customer.cpf).filter(Customer.cpf.isnot(None)).all()}
    codes = [row[0] for row in db.session.query(Customer.code).filter(Customer.code.isnot(None)).all()]
    next_number = _max_code_number(codes) + 1

    created: list[Customer] = []
    skipped = 0
    for raw in rows:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        cpf = normalize_cpf(raw.get("cpf"))
        name = str(raw.get("name") or "").strip()
        if len(cpf) != 11 or not name or cpf in existing:
            skipped += 1
            continue

        payload = {k: raw[k] for k in CONTACT_FIELDS if raw.get(k) not in (None, "")}
        payload["cpf"] = cpf
        try:
            patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        except ValidationError:
            skipped += 1
            continue

        created.append(build_customer(patch, code=format_customer_code(next_number)))
        existing.add(cpf)
        next_number += 1

    db.session.commit()

    for customer in created:
        publish_upsert(ENTITY_CUSTOMER, customer)
    log_action("Importação de Clientes", f"{len(created)} clientes importados, {skipped} ignorados.", actor)
    return {"imported": len(created), "skipped": skipped}


# =============================================================================
# ORDER CHECKOUT
# =============================================================================

def resolve_order_customer(data: dict, *, seller=None) -> Customer:
    """
    Find or create the customer an order is placed for. Does not commit.

    Matching goes by identity key. A trashed match is restored. A new
    customer gets the next code and, when it has a CPF, the initial password.
    """
    if not isinstance(data, dict):
        raise ValidationError("customer is required")
    payload = {k: data.get(k) for k in ("cpf", *CONTACT_FIELDS) if data.get(k) not in (None, "")}
    patch = validate_payload(model=Customer, payload=_with_clean_cpf(payload), policy=CUSTOMER_POLICY, partial=False)

    key = customer_identity_key(patch.get("cpf"), patch.get("name"), patch.get("phone"))
    customer = find_customer_by_identity(key)

    if customer is not None:
        if customer.deleted_at is not None:
            customer.deleted_at = None
        # Fill contact fields the record is missing; never overwrite
        for field in CONTACT_FIELDS:
            if patch.get(field) and not getattr(customer, field):
                setattr(customer, field, patch[field])
        if not customer.code:
            customer.code = allocate_customer_code()
        return customer

    if seller is not None:
        patch.setdefault("seller_id", seller.id)
        patch.setdefault("seller_name", seller.name)
    customer = build_customer(patch)
    db.session.flush()
    return customer
