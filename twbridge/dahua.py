"""Dahua IP camera alarm stream.

The camera answers config queries and pushes alarm notifications as plain
text. Two record shapes appear, one per line:

    table.MotionDetect[0].Enable=true
    Code=VideoMotion;action=Start;index=0

tokenize() splits a chunk into ConfigEntry / AlarmEvent records and
DahuaEventParser maps them to channel updates. A record that is absent
changes nothing, so a channel keeps its last state until the camera
reports it again.
"""
import logging, threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import quote
import httpx

log = logging.getLogger("dahua")

REQUEST_TIMEOUT = 10
CONFIG_CGI = "/cgi-bin/configManager.cgi"
ALARM_STREAM_PATH = "/cgi-bin/eventManager.cgi?action=attach&codes=[All]"

CHANNEL_ENABLE_MOTION_ALARM = "enableMotionAlarm"
CHANNEL_MOTION_ALARM = "motionAlarm"
CHANNEL_ITEM_TAKEN = "itemTaken"
CHANNEL_ITEM_LEFT = "itemLeft"
CHANNEL_LINE_CROSSING_ALARM = "lineCrossingAlarm"
CHANNEL_ENABLE_LINE_CROSSING_ALARM = "enableLineCrossingAlarm"
CHANNEL_ENABLE_AUDIO_ALARM = "enableAudioAlarm"
CHANNEL_AUDIO_ALARM = "audioAlarm"
CHANNEL_THRESHOLD_AUDIO_ALARM = "thresholdAudioAlarm"
CHANNEL_FACE_DETECTED = "faceDetected"
CHANNEL_PARKING_ALARM = "parkingAlarm"
CHANNEL_FIELD_DETECTION_ALARM = "fieldDetectionAlarm"
CHANNEL_EXTERNAL_ALARM_INPUT = "externalAlarmInput"
CHANNEL_EXTERNAL_ALARM_INPUT2 = "externalAlarmInput2"
CHANNEL_TEXT_OVERLAY = "textOverlay"
CHANNEL_ENABLE_LED = "enableLED"
CHANNEL_AUTO_LED = "autoLED"
CHANNEL_ACTIVATE_ALARM_OUTPUT = "activateAlarmOutput"
CHANNEL_ACTIVATE_ALARM_OUTPUT2 = "activateAlarmOutput2"

ON, OFF, UNDEF = "ON", "OFF", "UNDEF"

# (event code, index) -> channel
ALARM_CHANNELS: Dict[tuple, str] = {
    ("VideoMotion", 0): CHANNEL_MOTION_ALARM,
    ("TakenAwayDetection", 0): CHANNEL_ITEM_TAKEN,
    ("LeftDetection", 0): CHANNEL_ITEM_LEFT,
    ("CrossLineDetection", 0): CHANNEL_LINE_CROSSING_ALARM,
    ("AudioMutation", 0): CHANNEL_AUDIO_ALARM,
    ("FaceDetection", 0): CHANNEL_FACE_DETECTED,
    ("ParkingDetection", 0): CHANNEL_PARKING_ALARM,
    ("CrossRegionDetection", 0): CHANNEL_FIELD_DETECTION_ALARM,
    ("AlarmLocal", 0): CHANNEL_EXTERNAL_ALARM_INPUT,
    ("AlarmLocal", 1): CHANNEL_EXTERNAL_ALARM_INPUT2,
}

ACTIONS = {"Start": ON, "Stop": OFF}


@dataclass(frozen=True)
class ConfigEntry:
    key: str
    value: str


@dataclass(frozen=True)
class AlarmEvent:
    code: str
    action: str
    index: int
    extra: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ChannelUpdate:
    channel: str
    value: Any


Record = Union[ConfigEntry, AlarmEvent]


def _parse_event(line: str) -> Optional[AlarmEvent]:
    pairs: Dict[str, str] = {}
    parts = line.split(";")
    for i, part in enumerate(parts):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key == "data":
            # JSON payload runs to the end of the line and may contain ';'
            pairs[key] = ";".join([value] + parts[i + 1:]).strip()
            break
        pairs[key] = value.strip()
    try:
        return AlarmEvent(pairs.pop("Code"), pairs.pop("action"), int(pairs.pop("index")), pairs)
    except (KeyError, ValueError):
        return None


def tokenize(content: str) -> Iterator[Record]:
    for raw in content.splitlines():
        line = raw.strip()
        if not line or "=" not in line:
            continue
        if line.startswith("Code="):
            event = _parse_event(line)
            if event is None:
                log.debug("Skipping malformed alarm record %r", line)
                continue
            yield event
        else:
            key, _, value = line.partition("=")
            yield ConfigEntry(key.strip(), value.strip())


def _bool(value: str) -> Optional[str]:
    if value == "true":
        return ON
    if value == "false":
        return OFF
    return None


class DahuaEventParser:
    def __init__(self, nvr_channel: int = 0):
        self.nvr_channel = nvr_channel

    def _config_channels(self) -> Dict[str, tuple]:
        # only motion detection is per NVR channel; command_path() writes the same keys
        n = self.nvr_channel
        return {
            f"table.MotionDetect[{n}].Enable": (CHANNEL_ENABLE_MOTION_ALARM, _bool),
            "table.AudioDetect[0].MutationDetect": (CHANNEL_ENABLE_AUDIO_ALARM, _bool),
            # vendor spelling
            "table.AudioDetect[0].MutationThreold": (CHANNEL_THRESHOLD_AUDIO_ALARM, _percent),
            "table.VideoAnalyseRule[0][1].Enable": (CHANNEL_ENABLE_LINE_CROSSING_ALARM, _bool),
        }

    def parse(self, content: str) -> List[ChannelUpdate]:
        updates = []
        config_channels = self._config_channels()
        for record in tokenize(content):
            if isinstance(record, AlarmEvent):
                channel = ALARM_CHANNELS.get((record.code, record.index))
                value = ACTIONS.get(record.action)
                if channel and value:
                    updates.append(ChannelUpdate(channel, value))
            elif record.key in config_channels:
                channel, convert = config_channels[record.key]
                value = convert(record.value)
                if value is not None:
                    updates.append(ChannelUpdate(channel, value))
        return updates


def _percent(value: str) -> Optional[int]:
    try:
        return max(0, min(100, int(value)))
    except ValueError:
        return None


def _is_off(command) -> bool:
    return str(command).upper() in (OFF, "0")


def _set_config(query: str) -> str:
    return f"{CONFIG_CGI}?action=setConfig&{query}"


REFRESH_PATHS = {
    CHANNEL_ENABLE_AUDIO_ALARM: f"{CONFIG_CGI}?action=getConfig&name=AudioDetect[0]",
    CHANNEL_ENABLE_LINE_CROSSING_ALARM: f"{CONFIG_CGI}?action=getConfig&name=VideoAnalyseRule",
    CHANNEL_ENABLE_MOTION_ALARM: f"{CONFIG_CGI}?action=getConfig&name=MotionDetect[{{n}}]",
}


def command_path(channel: str, command, nvr_channel: int = 0) -> Optional[str]:
    """CGI request path that applies command on channel, None if not applicable."""
    on = str(command).upper() == ON
    if channel == CHANNEL_TEXT_OVERLAY:
        text = quote(str(command), safe="")
        if not text:
            return _set_config("VideoWidget[0].CustomTitle[1].EncodeBlend=false")
        return _set_config("VideoWidget[0].CustomTitle[1].EncodeBlend=true"
                           f"&VideoWidget[0].CustomTitle[1].Text={text}")
    if channel == CHANNEL_ENABLE_LED:
        if _is_off(command):
            return _set_config("Lighting[0][0].Mode=Off")
        if on:
            return _set_config("Lighting[0][0].Mode=Manual")
        return _set_config(f"Lighting[0][0].Mode=Manual&Lighting[0][0].MiddleLight[0].Light={command}")
    if channel == CHANNEL_AUTO_LED:
        return _set_config("Lighting[0][0].Mode=Auto") if on else None
    if channel == CHANNEL_THRESHOLD_AUDIO_ALARM:
        # round half up
        threshold = int(float(command) + 0.5)
        return _set_config(f"AudioDetect[0].MutationThreold={threshold or 1}")
    if channel == CHANNEL_ENABLE_AUDIO_ALARM:
        if on:
            return _set_config("AudioDetect[0].MutationDetect=true&AudioDetect[0].EventHandler.Dejitter=1")
        return _set_config("AudioDetect[0].MutationDetect=false")
    if channel == CHANNEL_ENABLE_LINE_CROSSING_ALARM:
        return _set_config(f"VideoAnalyseRule[0][1].Enable={'true' if on else 'false'}")
    if channel == CHANNEL_ENABLE_MOTION_ALARM:
        if on:
            return _set_config(f"MotionDetect[{nvr_channel}].Enable=true"
                               f"&MotionDetect[{nvr_channel}].EventHandler.Dejitter=1")
        return _set_config(f"MotionDetect[{nvr_channel}].Enable=false")
    if channel == CHANNEL_ACTIVATE_ALARM_OUTPUT:
        return _set_config(f"AlarmOut[0].Mode={1 if on else 0}")
    if channel == CHANNEL_ACTIVATE_ALARM_OUTPUT2:
        return _set_config(f"AlarmOut[1].Mode={1 if on else 0}")
    return None


ChannelListener = Callable[[ChannelUpdate], None]


class DahuaCamera:
    """HTTP side of one camera: command requests and the alarm event stream."""

    def __init__(self, base_url: str, user: str, password: str, nvr_channel: int = 0,
                 http: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.parser = DahuaEventParser(nvr_channel)
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(auth=httpx.DigestAuth(user, password), timeout=REQUEST_TIMEOUT)
        self._listeners: List[ChannelListener] = []
        self._lock = threading.Lock()
        self.channel_states: Dict[str, Any] = {}

    def register_listener(self, listener: ChannelListener):
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unregister_listener(self, listener: ChannelListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def set_channel_state(self, channel: str, value: Any):
        self._emit([ChannelUpdate(channel, value)])

    def feed(self, content: str) -> List[ChannelUpdate]:
        if content:
            log.debug("HTTP Result back from camera is :%s:", content)
        updates = self.parser.parse(content)
        self._emit(updates)
        return updates

    def _emit(self, updates: List[ChannelUpdate]):
        with self._lock:
            listeners = list(self._listeners)
        for update in updates:
            self.channel_states[update.channel] = update.value
            for listener in listeners:
                try:
                    listener(update)
                except Exception:
                    log.exception("Camera listener %r failed on %s", listener, update.channel)

    async def send_http_get(self, path: str) -> Optional[str]:
        try:
            r = await self._http.get(f"{self.base_url}{path}")
            r.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("Camera request %s failed: %s", path, e)
            return None
        # config replies carry state too
        self.feed(r.text)
        return r.text

    async def refresh(self, channel: str) -> Optional[str]:
        path = REFRESH_PATHS.get(channel)
        if path is None:
            return None
        return await self.send_http_get(path.format(n=self.parser.nvr_channel))

    async def handle_command(self, channel: str, command) -> Optional[str]:
        path = command_path(channel, command, self.parser.nvr_channel)
        if path is None:
            log.debug("No camera request for %s=%s", channel, command)
            return None
        if channel == CHANNEL_ENABLE_LED:
            self.set_channel_state(CHANNEL_AUTO_LED, OFF)
        elif channel == CHANNEL_AUTO_LED:
            self.set_channel_state(CHANNEL_ENABLE_LED, UNDEF)
        return await self.send_http_get(path)

    async def run_alarm_stream(self):
        """Read the alarm stream until the camera closes it or a transport error occurs."""
        url = f"{self.base_url}{ALARM_STREAM_PATH}"
        try:
            async with self._http.stream("GET", url, timeout=httpx.Timeout(REQUEST_TIMEOUT, read=None)) as r:
                r.raise_for_status()
                async for line in r.aiter_lines():
                    self.feed(line)
        except httpx.HTTPError as e:
            log.warning("Camera alarm stream %s ended: %s", url, e)

    async def close(self):
        if self._owns_http:
            await self._http.aclose()
