# pylint: disable=c-extension-no-member
from lxml import etree, objectify  # type: ignore  # pytype: disable=import-error


def validate_xml(content: bytes, xsd_file_name: str):
    """Validates XML using XSD"""
    schema = etree.XMLSchema(file=xsd_file_name)
    parser = objectify.makeparser(schema=schema)
    objectify.fromstring(content, parser)
