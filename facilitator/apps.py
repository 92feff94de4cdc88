import threading

from django.apps import AppConfig
from django.conf import settings


class FacilitatorAppConfig(AppConfig):
    name = 'facilitator'
    default_auto_field = 'django.db.models.BigAutoField'

    def __init__(self, app_name, app_module):
        super().__init__(app_name, app_module)
        self._facilitator = None
        self._facilitator_lock = threading.Lock()

    @property
    def facilitator(self):
        """The facilitator shared by every request of this process."""
        if self._facilitator is None:
            from facilitator.config import FacilitatorConfig
            from facilitator.services import Facilitator

            with self._facilitator_lock:
                if self._facilitator is None:
                    self._facilitator = Facilitator(FacilitatorConfig.from_settings(settings))
        return self._facilitator
