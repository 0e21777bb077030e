from rest_framework import serializers


class ProfileOverridesSerializer(serializers.Serializer):
    """
    Shape of caller-supplied overrides: every profile field is optional.
    Range checks live in the resolver so they surface as InvalidConfig.
    """
    width = serializers.IntegerField(required=False)
    height = serializers.IntegerField(required=False)
    fps = serializers.FloatField(required=False)
    video_bitrate_kbps = serializers.IntegerField(required=False)
    audio_bitrate_kbps = serializers.IntegerField(required=False)
    container = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        """Reject fields that are not part of an output profile."""
        unknown = sorted(set(self.initial_data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError(
                f"Unsupported override fields: {unknown}. Allowed: {sorted(self.fields)}"
            )
        return attrs


class UploadSerializer(serializers.Serializer):
    media = serializers.FileField()


class ProcessRequestSerializer(serializers.Serializer):
    jobId = serializers.CharField()
    targetPlatform = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    custom = serializers.JSONField(required=False, allow_null=True)
    socketId = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class CleanupRequestSerializer(serializers.Serializer):
    jobId = serializers.CharField()
