"""Protocol errors reported back to the client as ``channel-error`` events."""


class ChannelError(Exception):
    code = "channel_error"

    def __init__(self, subject: str = ""):
        super().__init__(f"{self.code}: {subject}" if subject else self.code)
        self.subject = subject


class DeviceNotFound(ChannelError):
    code = "device_not_found"


class RoomNotFound(ChannelError):
    code = "channel_not_found"


class RoomAlreadyExists(ChannelError):
    code = "channel_already_exists"
