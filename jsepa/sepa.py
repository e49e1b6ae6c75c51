# pylint: disable=too-many-instance-attributes,too-many-public-methods
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Iterable, List, NamedTuple, Optional, Tuple, Union
from xml.etree import ElementTree as ET  # noqa
from xml.etree.ElementTree import Element
from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils.translation import gettext_lazy as _
from jsepa.validators import unicode_decode, check_string_length, remove_spaces, check_iban, amount_to_string

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "EUR"

CREDITOR_NAME_MAX_LENGTH = 70
TEXT_MAX_LENGTH = 140


class InvalidFieldError(ValidationError):
    """Field value rejected by transaction setter (too long or not representable)."""

    def __init__(self, field_name: str, instruction_id: str = ""):
        self.field_name = field_name
        self.instruction_id = instruction_id
        super().__init__(
            _("Invalid value for field %(field)s in transaction %(instruction_id)s"),
            code="invalid_field",
            params={"field": field_name, "instruction_id": instruction_id},
        )


class InvalidIBANError(ValidationError):
    """IBAN failed structural or mod-97 checksum validation."""

    def __init__(self, instruction_id: str = ""):
        self.field_name = "iban"
        self.instruction_id = instruction_id
        super().__init__(
            _("Invalid IBAN in transaction %(instruction_id)s"),
            code="invalid_iban",
            params={"instruction_id": instruction_id},
        )


class XmlNode(NamedTuple):
    """Immutable description of XML element: tag, optional text, attributes and ordered children."""

    tag: str
    text: Optional[str] = None
    attrib: Tuple[Tuple[str, str], ...] = ()
    children: Tuple["XmlNode", ...] = ()

    def to_element(self) -> Element:
        el = Element(self.tag, dict(self.attrib))
        if self.text is not None:
            el.text = self.text
        for child in self.children:
            el.append(child.to_element())
        return el


class SepaTransaction(ABC):
    """
    Contract shared by SEPA transaction types (credit transfer, direct debit).
    Enclosing payment information block uses check_is_valid_transaction() to decide
    whether transaction can be included and build_schema_subtree() to emit it.
    """

    @abstractmethod
    def check_is_valid_transaction(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def build_schema_subtree(self) -> XmlNode:
        raise NotImplementedError

    def get_simple_xml_element_transaction(self) -> Element:
        return self.build_schema_subtree().to_element()

    def render_to_bytes(self, xml_declaration: bool = False) -> bytes:
        return ET.tostring(self.get_simple_xml_element_transaction(), encoding="utf-8", method="xml", xml_declaration=xml_declaration)


class CreditTransferTransaction(SepaTransaction):
    """
    Single SEPA credit transfer, serialized as pain.001 CdtTrfTxInf element.
    Setters validate input and raise InvalidFieldError / InvalidIBANError leaving
    earlier state intact. Setters return the transaction so calls can be chained.
    """

    def __init__(self):
        self.instruction_id = ""
        self.end_to_end_id = ""
        self.instructed_amount = "0.00"
        self.bic = ""
        self.iban = ""
        self.creditor_name = ""
        self.creditor_address_line = ""
        self.creditor_country = ""
        self.invoice_text = ""
        self.invoice_code = ""
        self.invoice_reference = ""
        self.currency = ""

    def __str__(self):
        return "{} {} {} {}".format(self.instruction_id, self.creditor_name, self.instructed_amount, self.currency or self._default_currency())

    @staticmethod
    def _default_currency() -> str:
        return getattr(settings, "SEPA_DEFAULT_CURRENCY", DEFAULT_CURRENCY)

    def _set_bounded_text(self, field_name: str, value: Any, max_length: int) -> "CreditTransferTransaction":
        text = unicode_decode(value)
        if not check_string_length(text, max_length):
            logger.debug("Transaction %s: %s rejected, length %d exceeds %d", self.instruction_id, field_name, len(text), max_length)
            raise InvalidFieldError(field_name, self.instruction_id)
        setattr(self, field_name, text)
        return self

    def set_instruction_id(self, instruction_id: str) -> "CreditTransferTransaction":
        self.instruction_id = unicode_decode(instruction_id)
        return self

    def get_instruction_id(self) -> str:
        return self.instruction_id

    def set_end_to_end_id(self, end_to_end_id: str) -> "CreditTransferTransaction":
        """
        Identification passed on unchanged throughout the entire end-to-end chain.
        """
        self.end_to_end_id = unicode_decode(end_to_end_id)
        return self

    def get_end_to_end_id(self) -> str:
        return self.end_to_end_id

    def set_instructed_amount(self, amount: Union[Decimal, float, int, str]) -> "CreditTransferTransaction":
        """
        Amount to be moved before deduction of charges, stored as two-decimal string.
        """
        try:
            self.instructed_amount = amount_to_string(amount)
        except ValueError as exc:
            logger.debug("Transaction %s: %s", self.instruction_id, exc)
            raise InvalidFieldError("instructed_amount", self.instruction_id) from exc
        return self

    def get_instructed_amount(self) -> str:
        return self.instructed_amount

    def set_bic(self, bic: str) -> "CreditTransferTransaction":
        self.bic = remove_spaces(bic)
        return self

    def get_bic(self) -> str:
        return self.bic

    def set_iban(self, iban: str) -> "CreditTransferTransaction":
        iban = remove_spaces(iban)
        if not check_iban(iban):
            logger.debug("Transaction %s: invalid IBAN %s", self.instruction_id, iban)
            raise InvalidIBANError(self.instruction_id)
        self.iban = iban.upper()
        return self

    def get_iban(self) -> str:
        return self.iban

    def set_creditor_name(self, name: str) -> "CreditTransferTransaction":
        return self._set_bounded_text("creditor_name", name, CREDITOR_NAME_MAX_LENGTH)

    def get_creditor_name(self) -> str:
        return self.creditor_name

    def set_creditor_address_line(self, address_line: str) -> "CreditTransferTransaction":
        return self._set_bounded_text("creditor_address_line", address_line, TEXT_MAX_LENGTH)

    def get_creditor_address_line(self) -> str:
        return self.creditor_address_line

    def set_creditor_country(self, country: str) -> "CreditTransferTransaction":
        return self._set_bounded_text("creditor_country", country, TEXT_MAX_LENGTH)

    def get_creditor_country(self) -> str:
        return self.creditor_country

    def set_invoice_text(self, text: str) -> "CreditTransferTransaction":
        """
        Unstructured remittance information, e.g. invoice number. Max 140 characters.
        """
        return self._set_bounded_text("invoice_text", text, TEXT_MAX_LENGTH)

    def get_invoice_text(self) -> str:
        return self.invoice_text

    def set_invoice_code(self, code: str) -> "CreditTransferTransaction":
        return self._set_bounded_text("invoice_code", code, TEXT_MAX_LENGTH)

    def get_invoice_code(self) -> str:
        return self.invoice_code

    def set_invoice_reference(self, reference: str) -> "CreditTransferTransaction":
        return self._set_bounded_text("invoice_reference", reference, TEXT_MAX_LENGTH)

    def get_invoice_reference(self) -> str:
        return self.invoice_reference

    def set_currency(self, currency: str) -> "CreditTransferTransaction":
        self.currency = unicode_decode(currency).upper()
        return self

    def get_currency(self) -> str:
        """
        Returns currency code. Empty currency is replaced by SEPA_DEFAULT_CURRENCY (EUR) on read.
        """
        if not self.currency:
            self.currency = self._default_currency()
        return self.currency

    def try_set(self, field_name: str, value: Any) -> Optional[ValidationError]:
        """
        Calls set_<field_name>(value) and returns the validation error instead of raising it.
        :param field_name: Field name, e.g. 'iban' or 'creditor_name'
        :param value: New value
        :return: None on success, ValidationError if value was rejected
        """
        setter = getattr(self, "set_" + field_name, None)
        if setter is None or not callable(setter):
            raise AttributeError("{} has no field {}".format(self.__class__.__name__, field_name))
        try:
            setter(value)
        except ValidationError as err:
            return err
        return None

    def check_is_valid_transaction(self) -> bool:
        return bool(self.get_bic() and self.get_iban() and self.get_creditor_name())

    def build_schema_subtree(self) -> XmlNode:
        creditor: List[XmlNode] = [XmlNode("Nm", self.get_creditor_name())]
        if self.get_creditor_address_line() and self.get_creditor_country():
            creditor.append(
                XmlNode(
                    "PstlAdr",
                    children=(
                        XmlNode("AdrLine", self.get_creditor_address_line()),
                        XmlNode("Ctry", self.get_creditor_country()),
                    ),
                )
            )

        children: List[XmlNode] = [
            XmlNode(
                "PmtId",
                children=(
                    XmlNode("InstrId", self.get_instruction_id()),
                    XmlNode("EndToEndId", self.get_end_to_end_id()),
                ),
            ),
            XmlNode(
                "Amt",
                children=(XmlNode("InstdAmt", self.get_instructed_amount(), (("Ccy", self.get_currency()),)),),
            ),
            XmlNode(
                "CdtrAgt",
                children=(XmlNode("FinInstnId", children=(XmlNode("BIC", self.get_bic()),)),),
            ),
            XmlNode("Cdtr", children=tuple(creditor)),
            XmlNode(
                "CdtrAcct",
                children=(XmlNode("Id", children=(XmlNode("IBAN", self.get_iban()),)),),
            ),
            XmlNode(
                "RmtInf",
                children=(
                    XmlNode(
                        "Strd",
                        children=(
                            XmlNode("CdtrRefInf", children=(XmlNode("Ref", self.get_invoice_reference()),)),
                            XmlNode("AddtlRmtInf", self.get_invoice_text()),
                        ),
                    ),
                ),
            ),
        ]
        if self.get_invoice_code():
            children.append(XmlNode("Purp", children=(XmlNode("Cd", self.get_invoice_code()),)))

        return XmlNode("CdtTrfTxInf", children=tuple(children))


def filter_valid_transactions(transactions: Iterable[SepaTransaction]) -> List[SepaTransaction]:
    """
    Returns transactions which pass check_is_valid_transaction(). Dropped transactions are logged.
    """
    out: List[SepaTransaction] = []
    for tx in transactions:
        if tx.check_is_valid_transaction():
            out.append(tx)
        else:
            logger.warning("Transaction %s dropped from batch, BIC, IBAN or creditor name missing", tx)
    return out
