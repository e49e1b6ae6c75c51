from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class JsepaConfig(AppConfig):
    name = "jsepa"
    verbose_name = _("SEPA Credit Transfers")
    default_auto_field = "django.db.models.AutoField"
