from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("status", views.payment_status_view, name="payment_status"),
    path("notification", views.midtrans_notification_view, name="midtrans_notification"),
    # Midtrans dashboards are often configured with a trailing slash
    path("notification/", views.midtrans_notification_view),
]
