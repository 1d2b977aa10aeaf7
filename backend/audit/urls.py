from rest_framework.routers import DefaultRouter

from .views import PaymentAuditLogViewSet

router = DefaultRouter()
router.register(r"payments", PaymentAuditLogViewSet, basename="payment-audit-log")

urlpatterns = router.urls
