from __future__ import annotations

import logging
import os

from pairchat.configurations.configuration_constants import Defaults
from pairchat.utils.sentinels import NotProvided

logger = logging.getLogger(__name__)


class RelayConfig:
    def __init__(self):

        # Hosting
        self.host = os.environ.get("PAIRCHAT_HOST", "0.0.0.0")
        self.port = int(os.environ.get("PAIRCHAT_PORT", 8000))
        self.cors_allowed_origins = os.environ.get("PAIRCHAT_CLIENT_ORIGIN", "*")
        self.secret_key: str | None = os.environ.get("PAIRCHAT_SECRET_KEY")
        self.ping_interval = 25
        self.ping_timeout = 60

        # Matchmaking
        self.match_delay_s: float = Defaults.MatchDelaySeconds
        self.min_prefix_length: int = Defaults.MinPrefixLength
        self.rescan_interval_s: float | None = None
        self.matchmaker = None  # Defaults to InterestMatchmaker at startup

        # Rooms
        self.history_size: int = Defaults.HistorySize
        self.inactivity_timeout_s: float = Defaults.InactivityTimeoutSeconds
        self.inactivity_warning_lead_s: float = Defaults.InactivityWarningLeadSeconds
        self.sweep_interval_s: float = Defaults.SweepIntervalSeconds
        self.reconnect_grace_s: float = Defaults.ReconnectGraceSeconds
        self.drain_grace_s: float = Defaults.DrainGraceSeconds
        self.requeue_on_drain: bool = True

        # Moderation and other collaborators
        self.moderation_store = None
        self.message_persister = None
        self.media_forwarder = None
        self.ban_check_fail_open: bool = False
        self.collaborator_timeout_s: float = Defaults.CollaboratorTimeoutSeconds
        self.save_message_logs: bool = False

        # Admin dashboard
        self.admin_enabled: bool = True
        self.admin_password: str | None = os.environ.get("ADMIN_PASSWORD")

        # Logging
        self.log_file: str | None = "./pairchat.log"
        self.log_level: int = logging.INFO
        self.match_logs_dir: str | None = "data/match_logs"

    def hosting(
        self,
        host: str = NotProvided,
        port: int = NotProvided,
        cors_allowed_origins: str | list[str] = NotProvided,
        secret_key: str = NotProvided,
        ping_interval: int = NotProvided,
        ping_timeout: int = NotProvided,
    ) -> RelayConfig:
        if host is not NotProvided:
            self.host = host

        if port is not NotProvided:
            self.port = port

        if cors_allowed_origins is not NotProvided:
            self.cors_allowed_origins = cors_allowed_origins

        if secret_key is not NotProvided:
            self.secret_key = secret_key

        if ping_interval is not NotProvided:
            self.ping_interval = ping_interval

        if ping_timeout is not NotProvided:
            self.ping_timeout = ping_timeout

        return self

    def matchmaking(
        self,
        match_delay_s: float = NotProvided,
        min_prefix_length: int = NotProvided,
        rescan_interval_s: float | None = NotProvided,
        matchmaker=NotProvided,
    ) -> RelayConfig:
        """Configure pairing.

        Args:
            match_delay_s: Delay between a match request and the first
                pairing attempt, letting the pool accumulate candidates.
            min_prefix_length: Shared-prefix length at which two interest
                tags count as similar.
            rescan_interval_s: If set, every pooled entry is retried on this
                period. None (default) only pairs on explicit requests.
            matchmaker: A Matchmaker strategy instance.
        """
        if match_delay_s is not NotProvided:
            if match_delay_s < 0:
                raise ValueError("match_delay_s must be non-negative")
            self.match_delay_s = match_delay_s

        if min_prefix_length is not NotProvided:
            if min_prefix_length < 1:
                raise ValueError("min_prefix_length must be at least 1")
            self.min_prefix_length = min_prefix_length

        if rescan_interval_s is not NotProvided:
            self.rescan_interval_s = rescan_interval_s

        if matchmaker is not NotProvided:
            self.matchmaker = matchmaker

        return self

    def rooms(
        self,
        history_size: int = NotProvided,
        inactivity_timeout_s: float = NotProvided,
        inactivity_warning_lead_s: float = NotProvided,
        sweep_interval_s: float = NotProvided,
        reconnect_grace_s: float = NotProvided,
        drain_grace_s: float = NotProvided,
        requeue_on_drain: bool = NotProvided,
    ) -> RelayConfig:
        if history_size is not NotProvided:
            if history_size < 1:
                raise ValueError("history_size must be at least 1")
            self.history_size = history_size

        if inactivity_timeout_s is not NotProvided:
            self.inactivity_timeout_s = inactivity_timeout_s

        if inactivity_warning_lead_s is not NotProvided:
            self.inactivity_warning_lead_s = inactivity_warning_lead_s

        if sweep_interval_s is not NotProvided:
            self.sweep_interval_s = sweep_interval_s

        if reconnect_grace_s is not NotProvided:
            self.reconnect_grace_s = reconnect_grace_s

        if drain_grace_s is not NotProvided:
            self.drain_grace_s = drain_grace_s

        if requeue_on_drain is not NotProvided:
            self.requeue_on_drain = requeue_on_drain

        if self.inactivity_warning_lead_s >= self.inactivity_timeout_s:
            logger.warning(
                f"Inactivity warning lead ({self.inactivity_warning_lead_s}s) is not "
                f"shorter than the timeout ({self.inactivity_timeout_s}s). "
                f"Warnings will fire as soon as a room goes quiet."
            )

        return self

    def moderation(
        self,
        moderation_store=NotProvided,
        message_persister=NotProvided,
        media_forwarder=NotProvided,
        ban_check_fail_open: bool = NotProvided,
        collaborator_timeout_s: float = NotProvided,
        save_message_logs: bool = NotProvided,
    ) -> RelayConfig:
        """Wire the external collaborators.

        Args:
            moderation_store: ModerationStore used for ban checks.
            message_persister: MessagePersister used as the audit log.
            media_forwarder: MediaForwarder receiving image/audio payloads.
            ban_check_fail_open: If True, an unreachable ban check lets the
                request through. Defaults to False (fail closed).
            collaborator_timeout_s: Upper bound on any blocking collaborator call.
            save_message_logs: Write messages to data/message_logs when no
                message_persister is given.
        """
        if moderation_store is not NotProvided:
            self.moderation_store = moderation_store

        if message_persister is not NotProvided:
            self.message_persister = message_persister

        if media_forwarder is not NotProvided:
            self.media_forwarder = media_forwarder

        if ban_check_fail_open is not NotProvided:
            self.ban_check_fail_open = ban_check_fail_open
            if ban_check_fail_open:
                logger.warning(
                    "Ban check configured to fail open: unreachable moderation "
                    "store will treat every fingerprint as not banned."
                )

        if collaborator_timeout_s is not NotProvided:
            self.collaborator_timeout_s = collaborator_timeout_s

        if save_message_logs is not NotProvided:
            self.save_message_logs = save_message_logs

        return self

    def admin(
        self,
        enabled: bool = NotProvided,
        password: str | None = NotProvided,
    ) -> RelayConfig:
        """
        Configure the admin dashboard.

        The password can be provided directly or via the ADMIN_PASSWORD
        environment variable.
        """
        if enabled is not NotProvided:
            self.admin_enabled = enabled

        if password is not NotProvided:
            self.admin_password = password or os.environ.get("ADMIN_PASSWORD")

        if self.admin_enabled and not self.admin_password:
            logger.warning(
                "Admin dashboard enabled without a password. Set ADMIN_PASSWORD "
                "or call .admin(password=...) to allow admin logins."
            )

        return self

    def logging(
        self,
        log_file: str | None = NotProvided,
        level: int = NotProvided,
        match_logs_dir: str | None = NotProvided,
    ) -> RelayConfig:
        """
        Args:
            log_file: Path of the server log file, or None for console only.
            level: Logging level for the pairchat logger.
            match_logs_dir: Directory for the match assignment JSONL log, or
                None to disable it.
        """
        if log_file is not NotProvided:
            self.log_file = log_file

        if level is not NotProvided:
            self.log_level = level

        if match_logs_dir is not NotProvided:
            self.match_logs_dir = match_logs_dir

        return self
