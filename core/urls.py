from django.contrib import admin
from django.urls import include, path

from core import views

urlpatterns = [
    path('', views.home, name='home'),
    path('api', views.api_info, name='api-info'),
    path('health', views.health, name='health'),
    path('admin/', admin.site.urls),
    path('', include('facilitator.urls')),
]
