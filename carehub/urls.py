"""
URL configuration for the carehub project.

Routes the Django admin and the API provided by the clinic app.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Django admin site (useful for development)
    path('admin/', admin.site.urls),
    # Include API routes from the clinic app
    path('', include('clinic.routers')),
]
