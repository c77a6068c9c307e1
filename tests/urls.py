from __future__ import annotations

from django.urls import path

from tests.testapp import views

urlpatterns = [
    path("", views.budget_view),
    path("timeout/", views.timeout_view),
]
