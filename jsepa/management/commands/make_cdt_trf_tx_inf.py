import logging
import sys
from django.core.management.base import CommandParser
from jutil.command import SafeCommand
from jutil.format import format_xml
from jsepa.helpers import validate_xml
from jsepa.sepa import CreditTransferTransaction

logger = logging.getLogger(__name__)


class Command(SafeCommand):
    help = """
        Generates pain.001 CdtTrfTxInf (credit transfer transaction information) XML element
        from command line parameters. Writes to stdout unless --output is given.
        """

    def add_arguments(self, parser: CommandParser):
        parser.add_argument("--instruction-id", type=str, default="")
        parser.add_argument("--end-to-end-id", type=str, default="")
        parser.add_argument("--amount", type=str, required=True)
        parser.add_argument("--currency", type=str, default="")
        parser.add_argument("--bic", type=str, required=True)
        parser.add_argument("--iban", type=str, required=True)
        parser.add_argument("--name", type=str, required=True)
        parser.add_argument("--address-line", type=str, default="")
        parser.add_argument("--country", type=str, default="")
        parser.add_argument("--invoice-text", type=str, default="")
        parser.add_argument("--invoice-code", type=str, default="")
        parser.add_argument("--invoice-reference", type=str, default="")
        parser.add_argument("--xsd", type=str)
        parser.add_argument("--output", type=str)
        parser.add_argument("--xml-declaration", action="store_true")

    def do(self, *args, **kwargs):  # noqa
        tx = CreditTransferTransaction()
        tx.set_instruction_id(kwargs["instruction_id"])
        tx.set_end_to_end_id(kwargs["end_to_end_id"])
        tx.set_instructed_amount(kwargs["amount"])
        tx.set_currency(kwargs["currency"])
        tx.set_bic(kwargs["bic"])
        tx.set_iban(kwargs["iban"])
        tx.set_creditor_name(kwargs["name"])
        tx.set_creditor_address_line(kwargs["address_line"])
        tx.set_creditor_country(kwargs["country"])
        tx.set_invoice_text(kwargs["invoice_text"])
        tx.set_invoice_code(kwargs["invoice_code"])
        tx.set_invoice_reference(kwargs["invoice_reference"])

        if not tx.check_is_valid_transaction():
            self.stderr.write(f"Transaction {tx.get_instruction_id()} is not valid: BIC, IBAN and creditor name are required")
            sys.exit(1)

        xml_bytes = tx.render_to_bytes(xml_declaration=kwargs["xml_declaration"])
        if kwargs["xsd"]:
            validate_xml(xml_bytes, kwargs["xsd"])
            logger.info("Transaction %s validated against %s", tx.get_instruction_id(), kwargs["xsd"])

        xml_str = format_xml(xml_bytes.decode())
        if kwargs["output"]:
            with open(kwargs["output"], "wt", encoding="utf-8") as fp:
                fp.write(xml_str)
            logger.info("%s written", kwargs["output"])
        else:
            self.stdout.write(xml_str)
