import os
import tempfile
from decimal import Decimal
from io import StringIO
from os.path import join
from xml.etree import ElementTree as ET
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase, override_settings
from jsepa.helpers import validate_xml
from jsepa.sepa import (
    CreditTransferTransaction,
    InvalidFieldError,
    InvalidIBANError,
    SepaTransaction,
    XmlNode,
    filter_valid_transactions,
)
from jsepa.validators import check_string_length, remove_spaces, unicode_decode, check_iban, amount_to_string
from lxml import etree  # type: ignore  # pytype: disable=import-error

VALID_IBAN = "DE89370400440532013000"

CDT_TRF_TX_INF_XSD = join(settings.BASE_DIR, "data/pain001/cdt_trf_tx_inf.xsd")


def make_transaction() -> CreditTransferTransaction:
    tx = CreditTransferTransaction()
    tx.set_instruction_id("TX1")
    tx.set_end_to_end_id("E2E1")
    tx.set_instructed_amount(12.5)
    tx.set_bic("BANKDEFF")
    tx.set_iban(VALID_IBAN)
    tx.set_creditor_name("Acme Corp")
    tx.set_invoice_text("Invoice 42")
    return tx


class ValidatorsTests(TestCase):
    def test_check_string_length(self):
        self.assertTrue(check_string_length("", 0))
        self.assertTrue(check_string_length("x" * 70, 70))
        self.assertFalse(check_string_length("x" * 71, 70))
        # measured in decoded characters, not in bytes
        self.assertTrue(check_string_length(("ä" * 70).encode("utf-8"), 70))
        self.assertFalse(check_string_length(("ä" * 71).encode("utf-8"), 70))

    def test_remove_spaces(self):
        self.assertEqual(remove_spaces("DE89 3704\t0044\n0532 0130 00"), VALID_IBAN)
        self.assertEqual(remove_spaces(" BANK DEFF "), "BANKDEFF")
        self.assertEqual(remove_spaces(None), "")

    def test_unicode_decode(self):
        self.assertEqual(unicode_decode(None), "")
        self.assertEqual(unicode_decode(42), "42")
        self.assertEqual(unicode_decode("Müller".encode("utf-8")), "Müller")
        self.assertEqual(unicode_decode(b"M\xfcller"), "Müller")
        self.assertEqual(unicode_decode("Müller"), "Müller")
        self.assertEqual(unicode_decode("A\x00B\x1fC\tD"), "ABC\tD")
        self.assertEqual(unicode_decode("a\r\nb\rc"), "a\nb\nc")

    def test_check_iban(self):
        self.assertTrue(check_iban(VALID_IBAN))
        self.assertTrue(check_iban("GB82WEST12345698765432"))
        self.assertTrue(check_iban("FI4947300010416310"))
        self.assertTrue(check_iban(VALID_IBAN.lower()))
        self.assertFalse(check_iban(""))
        self.assertFalse(check_iban("DE00370400440532013000"))
        self.assertFalse(check_iban("DE8937040044"))
        self.assertFalse(check_iban("DE89" + "0" * 31))
        self.assertFalse(check_iban("1E89370400440532013000"))
        self.assertFalse(check_iban("DEX9370400440532013000"))
        self.assertFalse(check_iban("DE89 3704 0044 0532 0130 00"))
        self.assertIs(check_iban(VALID_IBAN + "\n"), False)
        self.assertIs(check_iban("\n" + VALID_IBAN), False)

    def test_check_iban_single_digit_mutations(self):
        for i in range(2, len(VALID_IBAN)):
            d = int(VALID_IBAN[i])
            mutated = VALID_IBAN[:i] + str((d + 1) % 10) + VALID_IBAN[i + 1 :]
            self.assertFalse(check_iban(mutated), mutated)
        self.assertFalse(check_iban("EE" + VALID_IBAN[2:]))

    def test_amount_to_string(self):
        self.assertEqual(amount_to_string(12.5), "12.50")
        self.assertEqual(amount_to_string(0), "0.00")
        self.assertEqual(amount_to_string(Decimal("49")), "49.00")
        self.assertEqual(amount_to_string(" 1234.5 "), "1234.50")
        for v in ["abc", "", None, float("nan"), float("inf"), True]:
            with self.assertRaises(ValueError):
                amount_to_string(v)  # type: ignore


class CreditTransferTransactionTests(TestCase):
    def test_defaults(self):
        tx = CreditTransferTransaction()
        self.assertIsInstance(tx, SepaTransaction)
        self.assertEqual(tx.get_instruction_id(), "")
        self.assertEqual(tx.get_end_to_end_id(), "")
        self.assertEqual(tx.get_instructed_amount(), "0.00")
        self.assertEqual(tx.get_bic(), "")
        self.assertEqual(tx.get_iban(), "")
        self.assertEqual(tx.get_creditor_name(), "")
        self.assertEqual(tx.get_invoice_reference(), "")

    def test_set_iban(self):
        tx = CreditTransferTransaction()
        tx.set_iban("DE89 3704 0044 0532 0130 00")
        self.assertEqual(tx.get_iban(), VALID_IBAN)

    def test_set_iban_invalid(self):
        tx = CreditTransferTransaction().set_instruction_id("TX7").set_iban(VALID_IBAN)
        with self.assertRaises(InvalidIBANError) as cm:
            tx.set_iban("DE00370400440532013000")
        self.assertEqual(cm.exception.instruction_id, "TX7")
        self.assertEqual(cm.exception.code, "invalid_iban")
        self.assertIsInstance(cm.exception, ValidationError)
        self.assertEqual(tx.get_iban(), VALID_IBAN)

    def test_set_iban_invalid_before_instruction_id(self):
        with self.assertRaises(InvalidIBANError) as cm:
            CreditTransferTransaction().set_iban("XX")
        self.assertEqual(cm.exception.instruction_id, "")

    def test_set_bic(self):
        tx = CreditTransferTransaction().set_bic(" BANK DE FF ")
        self.assertEqual(tx.get_bic(), "BANKDEFF")

    def test_bounded_text_fields(self):
        tx = CreditTransferTransaction().set_instruction_id("TX9")
        tx.set_creditor_name("x" * 70)
        with self.assertRaises(InvalidFieldError) as cm:
            tx.set_creditor_name("y" * 71)
        self.assertEqual(cm.exception.field_name, "creditor_name")
        self.assertEqual(cm.exception.instruction_id, "TX9")
        self.assertEqual(cm.exception.params["instruction_id"], "TX9")
        self.assertEqual(tx.get_creditor_name(), "x" * 70)

        setters = {
            "creditor_address_line": (tx.set_creditor_address_line, tx.get_creditor_address_line),
            "creditor_country": (tx.set_creditor_country, tx.get_creditor_country),
            "invoice_text": (tx.set_invoice_text, tx.get_invoice_text),
            "invoice_code": (tx.set_invoice_code, tx.get_invoice_code),
            "invoice_reference": (tx.set_invoice_reference, tx.get_invoice_reference),
        }
        for field_name, (setter, getter) in setters.items():
            setter("a" * 140)
            self.assertEqual(getter(), "a" * 140)
            with self.assertRaises(InvalidFieldError) as cm:
                setter("b" * 141)
            self.assertEqual(cm.exception.field_name, field_name)
            self.assertEqual(getter(), "a" * 140)

    def test_creditor_name_decoded(self):
        tx = CreditTransferTransaction().set_creditor_name(b"J\xe4rvinen")
        self.assertEqual(tx.get_creditor_name(), "Järvinen")
        tx.set_creditor_name(("ö" * 70).encode("utf-8"))
        self.assertEqual(len(tx.get_creditor_name()), 70)

    def test_instructed_amount(self):
        tx = CreditTransferTransaction().set_instructed_amount(Decimal("100"))
        self.assertEqual(tx.get_instructed_amount(), "100.00")
        with self.assertRaises(InvalidFieldError) as cm:
            tx.set_instructed_amount("ten euros")
        self.assertEqual(cm.exception.field_name, "instructed_amount")
        self.assertEqual(tx.get_instructed_amount(), "100.00")

    def test_currency(self):
        tx = CreditTransferTransaction()
        self.assertEqual(tx.currency, "")
        self.assertEqual(tx.get_currency(), "EUR")
        self.assertEqual(tx.currency, "EUR")
        tx.set_currency("usd")
        self.assertEqual(tx.get_currency(), "USD")
        tx.set_currency("")
        self.assertEqual(tx.currency, "")
        self.assertEqual(tx.get_currency(), "EUR")

    @override_settings(SEPA_DEFAULT_CURRENCY="SEK")
    def test_currency_default_from_settings(self):
        self.assertEqual(CreditTransferTransaction().get_currency(), "SEK")

    @override_settings(SEPA_DEFAULT_CURRENCY="SEK")
    def test_str_uses_default_currency_setting(self):
        tx = CreditTransferTransaction().set_instruction_id("TX5")
        self.assertEqual(str(tx), "TX5  0.00 SEK")
        self.assertEqual(tx.currency, "")
        tx.set_currency("usd")
        self.assertEqual(str(tx), "TX5  0.00 USD")

    def test_check_is_valid_transaction(self):
        tx = CreditTransferTransaction()
        self.assertFalse(tx.check_is_valid_transaction())
        tx.set_bic("BANKDEFF")
        self.assertFalse(tx.check_is_valid_transaction())
        tx.set_iban(VALID_IBAN)
        self.assertFalse(tx.check_is_valid_transaction())
        tx.set_creditor_name("Acme Corp")
        self.assertTrue(tx.check_is_valid_transaction())

    def test_try_set(self):
        tx = CreditTransferTransaction().set_instruction_id("TX3")
        self.assertIsNone(tx.try_set("iban", VALID_IBAN))
        err = tx.try_set("iban", "DE00370400440532013000")
        self.assertIsInstance(err, InvalidIBANError)
        self.assertEqual(tx.get_iban(), VALID_IBAN)
        err = tx.try_set("invoice_text", "z" * 141)
        self.assertIsInstance(err, InvalidFieldError)
        with self.assertRaises(AttributeError):
            tx.try_set("no_such_field", "x")

    def test_xml_element(self):
        el = make_transaction().get_simple_xml_element_transaction()
        self.assertEqual(el.tag, "CdtTrfTxInf")
        self.assertEqual([c.tag for c in el], ["PmtId", "Amt", "CdtrAgt", "Cdtr", "CdtrAcct", "RmtInf"])
        self.assertEqual(el.findtext("PmtId/InstrId"), "TX1")
        self.assertEqual(el.findtext("PmtId/EndToEndId"), "E2E1")
        instd_amt = el.find("Amt/InstdAmt")
        assert instd_amt is not None
        self.assertEqual(instd_amt.text, "12.50")
        self.assertEqual(instd_amt.get("Ccy"), "EUR")
        self.assertEqual(el.findtext("CdtrAgt/FinInstnId/BIC"), "BANKDEFF")
        self.assertEqual(el.findtext("Cdtr/Nm"), "Acme Corp")
        self.assertIsNone(el.find("Cdtr/PstlAdr"))
        self.assertEqual(el.findtext("CdtrAcct/Id/IBAN"), VALID_IBAN)
        ref = el.find("RmtInf/Strd/CdtrRefInf/Ref")
        assert ref is not None
        self.assertEqual(ref.text or "", "")
        self.assertEqual([c.tag for c in el.find("RmtInf/Strd")], ["CdtrRefInf", "AddtlRmtInf"])  # type: ignore
        self.assertEqual(el.findtext("RmtInf/Strd/AddtlRmtInf"), "Invoice 42")
        self.assertIsNone(el.find("Purp"))

    def test_xml_element_optional_blocks(self):
        tx = make_transaction()
        tx.set_creditor_address_line("Hauptstrasse 1")
        el = tx.get_simple_xml_element_transaction()
        self.assertIsNone(el.find("Cdtr/PstlAdr"))

        tx.set_creditor_country("DE")
        tx.set_invoice_code("SUPP")
        tx.set_invoice_reference("RF18539007547034")
        tx.set_currency("chf")
        el = tx.get_simple_xml_element_transaction()
        self.assertEqual([c.tag for c in el], ["PmtId", "Amt", "CdtrAgt", "Cdtr", "CdtrAcct", "RmtInf", "Purp"])
        self.assertEqual([c.tag for c in el.find("Cdtr")], ["Nm", "PstlAdr"])  # type: ignore
        self.assertEqual([c.tag for c in el.find("Cdtr/PstlAdr")], ["AdrLine", "Ctry"])  # type: ignore
        self.assertEqual(el.findtext("Cdtr/PstlAdr/AdrLine"), "Hauptstrasse 1")
        self.assertEqual(el.findtext("Cdtr/PstlAdr/Ctry"), "DE")
        self.assertEqual(el.findtext("Purp/Cd"), "SUPP")
        self.assertEqual(el.findtext("RmtInf/Strd/CdtrRefInf/Ref"), "RF18539007547034")
        self.assertEqual(el.find("Amt/InstdAmt").get("Ccy"), "CHF")  # type: ignore

    def test_emitted_text_matches_stored_text(self):
        tx = make_transaction().set_invoice_text("line 1\r\nline 2\rline 3")
        self.assertEqual(tx.get_invoice_text(), "line 1\nline 2\nline 3")
        el = ET.fromstring(tx.render_to_bytes())
        self.assertEqual(el.findtext("RmtInf/Strd/AddtlRmtInf"), tx.get_invoice_text())

    def test_xml_builder_idempotent(self):
        tx = make_transaction()
        first = tx.build_schema_subtree()
        self.assertIsInstance(first, XmlNode)
        self.assertEqual(first, tx.build_schema_subtree())
        self.assertEqual(tx.render_to_bytes(), tx.render_to_bytes())

    def test_xml_builder_does_not_validate(self):
        el = CreditTransferTransaction().get_simple_xml_element_transaction()
        self.assertEqual(el.findtext("CdtrAcct/Id/IBAN"), "")
        self.assertEqual(el.findtext("Amt/InstdAmt"), "0.00")
        self.assertEqual(el.find("Amt/InstdAmt").get("Ccy"), "EUR")  # type: ignore

    def test_render_to_bytes(self):
        xml_bytes = make_transaction().render_to_bytes()
        self.assertTrue(xml_bytes.startswith(b"<CdtTrfTxInf>"))
        self.assertIn(b'<InstdAmt Ccy="EUR">12.50</InstdAmt>', xml_bytes)
        self.assertTrue(make_transaction().render_to_bytes(xml_declaration=True).startswith(b"<?xml"))

    def test_validate_xml(self):
        tx = make_transaction()
        validate_xml(tx.render_to_bytes(), CDT_TRF_TX_INF_XSD)
        tx.set_creditor_address_line("Hauptstrasse 1").set_creditor_country("DE").set_invoice_code("SUPP")
        validate_xml(tx.render_to_bytes(), CDT_TRF_TX_INF_XSD)

        el = tx.get_simple_xml_element_transaction()
        cdtr = el.find("Cdtr")
        assert cdtr is not None
        el.remove(cdtr)
        el.insert(1, cdtr)
        with self.assertRaises(etree.XMLSyntaxError):
            validate_xml(ET.tostring(el), CDT_TRF_TX_INF_XSD)

    def test_filter_valid_transactions(self):
        valid = make_transaction()
        invalid = CreditTransferTransaction().set_instruction_id("TX2")
        with self.assertLogs("jsepa.sepa", level="WARNING") as logs:
            out = filter_valid_transactions([valid, invalid])
        self.assertEqual(out, [valid])
        self.assertIn("TX2", logs.output[0])


class CommandTests(TestCase):
    def test_make_cdt_trf_tx_inf(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            filename = os.path.join(tmp_dir, "cdt_trf_tx_inf.xml")
            call_command(
                "make_cdt_trf_tx_inf",
                "--instruction-id=TX1",
                "--end-to-end-id=E2E1",
                "--amount=12.5",
                "--bic=BANKDEFF",
                "--iban=DE89 3704 0044 0532 0130 00",
                "--name=Acme Corp",
                "--invoice-text=Invoice 42",
                "--xsd=" + CDT_TRF_TX_INF_XSD,
                "--output=" + filename,
            )
            el = ET.parse(filename).getroot()
        self.assertEqual(el.tag, "CdtTrfTxInf")
        self.assertEqual(el.findtext("Amt/InstdAmt"), "12.50")
        self.assertEqual(el.findtext("CdtrAcct/Id/IBAN"), VALID_IBAN)
        self.assertIsNone(el.find("Purp"))

    def test_make_cdt_trf_tx_inf_stdout(self):
        out = StringIO()
        call_command(
            "make_cdt_trf_tx_inf",
            "--amount=1",
            "--currency=usd",
            "--bic=BANKDEFF",
            "--iban=" + VALID_IBAN,
            "--name=Acme Corp",
            stdout=out,
        )
        self.assertIn("CdtTrfTxInf", out.getvalue())
        self.assertIn('Ccy="USD"', out.getvalue())

    def test_make_cdt_trf_tx_inf_invalid(self):
        with self.assertRaises(SystemExit):
            call_command(
                "make_cdt_trf_tx_inf",
                "--amount=1",
                "--bic=BANKDEFF",
                "--iban=" + VALID_IBAN,
                "--name=",
                stdout=StringIO(),
                stderr=StringIO(),
            )
