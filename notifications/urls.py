from django.urls import path

from . import views

app_name = "notifications"

urlpatterns = [
    path("", views.NotificationListView.as_view(), name="notification_list"),
    path("read-all/", views.NotificationMarkAllReadView.as_view(), name="notification_read_all"),
    path("<int:notification_id>/read/", views.NotificationMarkReadView.as_view(), name="notification_read"),
]
