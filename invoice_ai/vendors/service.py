"""Vendor registry: fuzzy identity resolution and running spend aggregates.

A vendor reported by the model is matched against the registry by exact
stored name, normalized name (trimmed, lowercased) or a known alias, in a
single combined lookup. Matches accumulate the reported name as an alias so
spelling variants and reviewer renames keep re-matching later extractions.

Matching is best-effort: two distinct vendors that share a display name merge,
and a vendor whose name the model spells in a new way splits until a reviewer
renames it.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from invoice_ai.db.models import Vendor, VendorAlias, utcnow
from invoice_ai.extraction.schema import VendorInfo
from invoice_ai.shared.errors import VendorConflictError

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


def normalize_vendor_name(name: str) -> str:
    return name.strip().lower()


class VendorRegistry:
    """Vendor lookup and upsert bound to one session (one transaction).

    ``last_outcome`` holds "matched" or "created" for the most recent
    ``reconcile`` call, so callers can report it once the transaction commits.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.last_outcome: str | None = None

    def find_match(self, name: str, for_update: bool = False) -> Vendor | None:
        """Find the vendor an extracted name refers to.

        Args:
            name: Vendor name as reported by the model or a reviewer
            for_update: Lock the matched row until the transaction ends

        Returns:
            Oldest vendor matching by exact name, normalized name or alias, or None
        """
        stmt = (
            select(Vendor)
            .where(
                or_(
                    Vendor.name == name,
                    Vendor.normalized_name == normalize_vendor_name(name),
                    Vendor.aliases.any(VendorAlias.alias == name),
                )
            )
            .order_by(Vendor.created_at, Vendor.id)
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def reconcile(
        self, vendor_info: VendorInfo, total_amount: Decimal, now: datetime | None = None
    ) -> Vendor:
        """Attribute one extracted invoice to a vendor, creating it if needed.

        Args:
            vendor_info: Vendor block from the extraction result
            total_amount: Invoice total to add to the vendor's spend
            now: Timestamp recorded as the vendor's last invoice date

        Returns:
            The matched or newly created Vendor
        """
        now = now or utcnow()
        name = vendor_info.name

        vendor = self.find_match(name, for_update=True)
        if vendor is not None:
            self._record_invoice(vendor, name, total_amount, now)
            self.last_outcome = "matched"
            logger.info(f"Matched vendor {vendor.id} for '{name}' ({vendor.total_invoices} invoices)")
            return vendor

        vendor = Vendor(
            name=name,
            normalized_name=normalize_vendor_name(name),
            address=vendor_info.address,
            tax_id=vendor_info.tax_id,
            email=vendor_info.email,
            phone=vendor_info.phone,
            total_invoices=1,
            total_spend=total_amount,
            average_invoice_amount=total_amount,
            last_invoice_date=now,
        )
        vendor.aliases.append(VendorAlias(alias=name, position=0))

        try:
            with self.session.begin_nested():
                self.session.add(vendor)
                self.session.flush()
        except IntegrityError:
            # Another transaction created the same normalized name first.
            logger.info(f"Vendor '{name}' created concurrently, attributing to existing row")
            vendor = self.find_match(name, for_update=True)
            if vendor is None:
                raise
            self._record_invoice(vendor, name, total_amount, now)
            self.last_outcome = "matched"
            return vendor

        self.last_outcome = "created"
        logger.info(f"Created vendor {vendor.id} for '{name}'")
        return vendor

    def rename(self, vendor: Vendor, new_name: str, previous_names: list[str] | None = None) -> bool:
        """Apply a reviewer rename, keeping old names as aliases.

        Args:
            vendor: Vendor to rename
            new_name: Corrected display name
            previous_names: Additional names to demote (e.g. the invoice's AI-reported name)

        Returns:
            True if the vendor's stored name changed

        Raises:
            VendorConflictError: If another vendor already uses the normalized name
        """
        if new_name == vendor.name:
            return False

        normalized = normalize_vendor_name(new_name)
        conflict = self.session.scalars(
            select(Vendor).where(Vendor.normalized_name == normalized, Vendor.id != vendor.id)
        ).first()
        if conflict is not None:
            raise VendorConflictError(
                f"Cannot rename vendor {vendor.id} to '{new_name}': "
                f"vendor {conflict.id} is already named '{conflict.name}'"
            )

        for old_name in [vendor.name, *(previous_names or [])]:
            if old_name and old_name != new_name:
                add_alias(vendor, old_name)

        logger.info(f"Renamed vendor {vendor.id} from '{vendor.name}' to '{new_name}'")
        vendor.name = new_name
        vendor.normalized_name = normalized
        vendor.updated_at = utcnow()
        self.session.flush()
        return True

    def _record_invoice(
        self, vendor: Vendor, reported_name: str, total_amount: Decimal, now: datetime
    ) -> None:
        add_alias(vendor, reported_name)
        vendor.total_invoices = (vendor.total_invoices or 0) + 1
        vendor.total_spend = Decimal(vendor.total_spend or 0) + total_amount
        vendor.average_invoice_amount = (vendor.total_spend / vendor.total_invoices).quantize(
            _CENTS, rounding=ROUND_HALF_UP
        )
        vendor.last_invoice_date = now
        self.session.flush()


def add_alias(vendor: Vendor, alias: str) -> bool:
    """Append an alias unless the vendor already has it.

    Returns:
        True if the alias was added
    """
    if alias in vendor.alias_names:
        return False
    position = max((a.position for a in vendor.aliases), default=-1) + 1
    vendor.aliases.append(VendorAlias(alias=alias, position=position))
    return True
