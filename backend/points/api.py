from __future__ import annotations

from rest_framework import generics, permissions, serializers
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import PointsTransaction, UserPoints
from .services import points_to_credit


class PointsTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PointsTransaction
        fields = ("id", "type", "amount", "description", "booking", "created_at")
        read_only_fields = fields


class PointsBalanceView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        points = UserPoints.objects.filter(user=request.user).first()
        balance = points.balance if points else 0
        return Response(
            {
                "balance": balance,
                "lifetime_earned": points.lifetime_earned if points else 0,
                "credit_value": str(points_to_credit(balance)),
            }
        )


class PointsTransactionListView(generics.ListAPIView):
    serializer_class = PointsTransactionSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return PointsTransaction.objects.filter(user=self.request.user)
