import django_filters

from .models import Listing


class ListingFilter(django_filters.FilterSet):
    price_min = django_filters.NumberFilter(field_name="price_per_day", lookup_expr="gte")
    price_max = django_filters.NumberFilter(field_name="price_per_day", lookup_expr="lte")
    city = django_filters.CharFilter(field_name="city", lookup_expr="iexact")
    owner_id = django_filters.NumberFilter(field_name="owner_id")

    class Meta:
        model = Listing
        fields = ["category", "city", "owner_id", "is_available"]
