from django.apps import AppConfig


class DjangoIsaConfig(AppConfig):
    name = "django_isa"
    verbose_name = "Income Share Agreements"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        from .graph import check_status_graph
        check_status_graph()
