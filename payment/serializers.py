from rest_framework import serializers

from .models import VendorPayout


class VendorPayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = VendorPayout
        fields = [
            "id",
            "vendor",
            "shop",
            "order",
            "amount",
            "platform_fee",
            "total_amount",
            "status",
            "paystack_account_code",
            "metadata",
            "created_at",
            "updated_at",
        ]


class CreateVendorAccountSerializer(serializers.Serializer):
    vendor_id = serializers.UUIDField()
    shop_id = serializers.UUIDField()
    business_name = serializers.CharField(max_length=255)
    account_number = serializers.RegexField(
        regex=r"^\d+$",
        max_length=20,
        error_messages={"invalid": "Account number must be numeric"},
    )
    bank_code = serializers.CharField(max_length=20)
    percentage_charge = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=0,
        max_value=100,
        required=False,
    )


class UpdateVendorAccountSerializer(serializers.Serializer):
    business_name = serializers.CharField(max_length=255, required=False)
    account_number = serializers.RegexField(
        regex=r"^\d+$",
        max_length=20,
        required=False,
        error_messages={"invalid": "Account number must be numeric"},
    )
    bank_code = serializers.CharField(max_length=20, required=False)
    percentage_charge = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=0,
        max_value=100,
        required=False,
    )

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field must be provided")
        return attrs


class EarningsQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError("start_date must be before end_date")
        return attrs


class PaginationQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    per_page = serializers.IntegerField(min_value=1, max_value=100, default=10)
