from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from reviews.api import UserReviewsGivenView, UserReviewsReceivedView

from .api import EmailTokenObtainPairView, ProfileView, PublicProfileView, SignupView

app_name = "users"

urlpatterns = [
    path("signup/", SignupView.as_view(), name="signup"),
    path("token/", EmailTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("profile/", ProfileView.as_view(), name="profile"),
    path("<int:pk>/", PublicProfileView.as_view(), name="public_profile"),
    path(
        "<int:pk>/reviews/received/",
        UserReviewsReceivedView.as_view(),
        name="reviews_received",
    ),
    path("<int:pk>/reviews/given/", UserReviewsGivenView.as_view(), name="reviews_given"),
]
