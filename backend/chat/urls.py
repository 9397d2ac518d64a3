from django.urls import path

from chat import views

app_name = "chat"

urlpatterns = [
    path("", views.conversations, name="conversation-list"),
    path("<int:pk>/messages/", views.conversation_messages, name="conversation-messages"),
]
