"""Module catalog: the default ordered stages of collection tasks."""
#
# Every command is plain shell text run by the CollectorRunner under
# ``bash -c "set -o pipefail; ..."`` with the run directory as working
# directory and stdout redirected into the task's artifact. Commands therefore
# never redirect their own output, and may read earlier artifacts through
# run-relative paths (``processes/ps_aux_full.txt``).
#
# Pipelines that feed ``find``/``grep`` into a sorter wrap the producer in
# ``( ... || true)`` so a missing directory or a no-match grep is not turned
# into a task failure by pipefail. Truncation uses ``sed -n`` rather than
# ``head`` so the upstream never dies of SIGPIPE.
#
import logging
from typing import Dict, List

from hostsweep.base.config import Configuration, TimeoutClass
from hostsweep.engine.models import CollectionTask, Stage

logger = logging.getLogger(__name__)

SHORT = TimeoutClass.SHORT
MEDIUM = TimeoutClass.MEDIUM
LONG = TimeoutClass.LONG

FIND_PRINTF = r"-printf '%TY-%Tm-%Td %TT %u:%g %m %p\n'"
SUID_PRINTF = r"-printf '%TY-%Tm-%Td %TT %m %u:%g %p\n'"

SYSTEM_BIN_DIRS = "/bin /sbin /usr/bin /usr/sbin /usr/local/bin /usr/local/sbin /opt"

CRITICAL_BINARIES = (
    "/bin/bash",
    "/bin/sh",
    "/usr/bin/sudo",
    "/usr/sbin/sshd",
    "/usr/bin/ssh",
    "/usr/bin/curl",
    "/usr/bin/wget",
)

# Reverse shells, fifo tricks, interpreter one-liners and pipe-to-shell downloads
SUSPICIOUS_PROCESS_RE = (
    r"(\bnc\b|\bsocat\b|mkfifo|bash -i|sh -i|python -c|perl -e|ruby -e|php -r"
    r"|curl .*\|\s*(sh|bash)|wget .*\|\s*(sh|bash))"
)
PROCESS_NOISE_RE = r"(\bgrep\b|hostsweep|^USER\b|sshd:|\bcron\b)"

SHELL_RC_SUSPICIOUS_RE = (
    r"(LD_PRELOAD|curl|wget|nc\b|socat\b|mkfifo|base64|openssl enc|python -c|perl -e"
    r"|nohup|setsid|/dev/tcp|systemctl --user|crontab|@reboot)"
)

LD_PRELOAD_SEARCH_PATHS = (
    "/etc/environment /etc/profile /etc/profile.d /etc/bash.bashrc "
    "/etc/zsh/zshrc /etc/zsh/zprofile /etc/ld.so.conf.d"
)

# Signal name -> task whose artifact lines are counted for it
SIGNAL_TASKS: Dict[str, str] = {
    "suspicious_process_matches": "suspicious_process_patterns",
    "recent_system_executables": "recent_exec_system",
    "recent_home_files": "recent_home_files_top3000",
    "uncommon_established_lines": "established_uncommon_ports",
    "integrity_findings": "dpkg_verify",
}


def _task(name: str, category: str, command: str, **kwargs) -> CollectionTask:
    output = kwargs.pop("output", f"{name}.txt")
    return CollectionTask(name=name, category=category, command=command, output=output, **kwargs)


def _newest_first(find_expr: str, limit: int = 0) -> str:
    """``find`` listing sorted newest first, optionally truncated."""
    cmd = f"(find {find_expr} 2>/dev/null || true) | sort -r"
    if limit:
        cmd += f" | sed -n '1,{limit}p'"
    return cmd


def _established_uncommon(ports_regex: str) -> str:
    # ss omits the State column when filtering on a state, so the peer is $4.
    # The ss header line is kept: more than one line means a real hit.
    awk = r"""
  function extract_port(addr,   tmp) {
    if (addr ~ /\]:[0-9]+$/) { tmp=addr; sub(/.*\]:/, "", tmp); return tmp }
    if (addr ~ /:[0-9]+$/) { tmp=addr; sub(/.*:/, "", tmp); return tmp }
    return ""
  }
  NR==1 {print; next}
  {
    r=$4;
    if (r ~ /(127\.0\.0\.1|\[::1\]|localhost)/) next;
    rp=extract_port(r);
    if (rp != "" && rp !~ re) print
  }"""
    return f"ss -tnp state established 2>/dev/null | awk -v re='{ports_regex}' '{awk}'"


# ============================================================================
# Stages
# ============================================================================

def context_stage() -> Stage:
    return Stage("context", (
        _task("uname", "summary", "uname -a", required=True),
        _task("uptime", "summary", "uptime", required=True),
        _task("who", "summary", "who || true", parallel=True),
        _task("last_50", "summary", "last -n 50 || true", parallel=True),
        _task("ip_a", "network", "ip a || true", parallel=True),
        _task("ip_r", "network", "ip r || true", parallel=True),
        _task("ss_listeners", "network", "ss -tulpn || true", parallel=True),
        _task("ps_tree", "processes", "ps auxwwf", parallel=True),
    ))


def disruption_stage() -> Stage:
    bounce = (
        "for iface in tun0 wg0; do "
        "if ip link show \"$iface\" >/dev/null 2>&1; then "
        "echo \"bouncing $iface\"; ip link set \"$iface\" down || true; sleep 2; "
        "ip link set \"$iface\" up || true; fi; done"
    )
    return Stage("disruption", (
        _task(
            "dns_flush", "network",
            "if command -v resolvectl >/dev/null 2>&1; then resolvectl flush-caches || true; fi",
            output="disruption_dns_flush.txt", merge_stderr=True,
        ),
        _task(
            "route_flush", "network", "ip route flush cache || true",
            output="disruption_route_flush.txt", merge_stderr=True,
        ),
        _task(
            "networkmanager_restart", "network",
            "if systemctl is-active --quiet NetworkManager 2>/dev/null; then "
            "systemctl restart NetworkManager; "
            "else echo 'NetworkManager not active; skipping restart.'; fi",
            output="disruption_networkmanager.txt", merge_stderr=True, timeout_class=MEDIUM,
        ),
        _task(
            "tunnel_bounce", "network", bounce,
            output="disruption_tunnels.txt", merge_stderr=True,
        ),
    ))


def persistence_stage() -> Stage:
    user_units = _newest_first(
        r"/home -maxdepth 4 -type f \( -path '*/.config/systemd/user/*.service'"
        r" -o -path '*/.config/systemd/user/*.timer' \) " + FIND_PRINTF
    )
    ld_preload = (
        "echo '### /etc/ld.so.preload (if present)'; ls -la /etc/ld.so.preload 2>/dev/null || true; echo; "
        "echo '### Contents (/etc/ld.so.preload)'; cat /etc/ld.so.preload 2>/dev/null || true; echo; "
        "echo '### Grep LD_PRELOAD references'; "
        f"grep -R --binary-files=text --line-number 'LD_PRELOAD' {LD_PRELOAD_SEARCH_PATHS} 2>/dev/null || true"
    )
    shell_rc = (
        "echo '### Suspicious lines in shell rc files (home)'; "
        r"(find /home -maxdepth 3 -type f \( -name '.bashrc' -o -name '.zshrc' -o -name '.profile'"
        r" -o -name '.zprofile' -o -name '.bash_profile' \) -print 2>/dev/null || true) | "
        "while read -r f; do echo; echo \"## $f\"; "
        f"grep --binary-files=text -nE '{SHELL_RC_SUSPICIOUS_RE}' \"$f\" 2>/dev/null || true; done"
    )
    return Stage("persistence", (
        _task("systemd_enabled_units", "persistence",
              "systemctl list-unit-files --state=enabled || true", parallel=True),
        _task("systemd_timers", "persistence", "systemctl list-timers --all || true", parallel=True),
        _task("cron_ls", "persistence",
              "ls -la /etc/cron.* /var/spool/cron /var/spool/cron/crontabs || true",
              merge_stderr=True, parallel=True),
        _task("user_crontab", "persistence", "crontab -l || true", merge_stderr=True, parallel=True),
        _task("root_crontab", "persistence", "crontab -u root -l || true", merge_stderr=True, parallel=True),
        _task("systemd_user_units", "persistence", user_units, parallel=True),
        _task("authorized_keys_locations", "persistence",
              "find /home -name authorized_keys -type f -exec ls -la {} + 2>/dev/null || true",
              parallel=True),
        _task("ld_preload_audit", "persistence", ld_preload, parallel=True),
        _task("shell_rc_suspicious_lines", "persistence", shell_rc, parallel=True),
    ))


def processes_stage() -> Stage:
    # The pattern grep reads the listing taken just before it; keep both sequential.
    return Stage("processes", (
        _task("ps_aux_full", "processes", "ps auxww", required=True),
        _task(
            "suspicious_process_patterns", "processes",
            f"(grep -E '{SUSPICIOUS_PROCESS_RE}' processes/ps_aux_full.txt || true)"
            f" | (grep -vE '{PROCESS_NOISE_RE}' || true)",
        ),
    ))


def filesystem_stage(config: Configuration) -> Stage:
    minutes = config.since_minutes
    return Stage("filesystem", (
        _task(
            "recent_exec_system", "filesystem",
            _newest_first(f"{SYSTEM_BIN_DIRS} -type f -executable -mmin -{minutes} {FIND_PRINTF}"),
            timeout_class=MEDIUM, parallel=True,
        ),
        _task(
            "recent_home_files_top3000", "filesystem",
            _newest_first(f"/home -maxdepth 6 -type f -mmin -{minutes} {FIND_PRINTF}", limit=3000),
            timeout_class=LONG, parallel=True,
        ),
        _task(
            "hidden_files_top3000", "filesystem",
            _newest_first(f"/home -maxdepth 4 -type f -name '.*' {FIND_PRINTF}", limit=3000),
            timeout_class=LONG, parallel=True,
        ),
        _task(
            "suid_sgid_all", "filesystem",
            _newest_first(r"/ -xdev \( -perm -4000 -o -perm -2000 \) -type f " + SUID_PRINTF),
            timeout_class=LONG, parallel=True, paranoid_only=True,
        ),
    ))


def network_stage(config: Configuration) -> Stage:
    return Stage("network", (
        _task("ss_tcp_all", "network", "ss -tpna || true", parallel=True),
        _task("ss_udp_all", "network", "ss -uapn || true", parallel=True),
        _task("established_uncommon_ports", "network",
              _established_uncommon(config.common_ports_regex), parallel=True),
    ))


def logs_stage(config: Configuration) -> Stage:
    hours = config.since_hours
    guard = "if command -v journalctl >/dev/null 2>&1; then {}; fi"
    return Stage("logs", (
        _task(
            f"journal_warn_last_{hours}h", "logs",
            guard.format(f"journalctl -p warning..alert --since '{hours} hour ago' || true"),
            merge_stderr=True, timeout_class=MEDIUM, parallel=True,
        ),
        _task(
            "journal_tail_4000", "logs",
            guard.format(f"journalctl --since '{hours} hour ago' | tail -n 4000"),
            merge_stderr=True, timeout_class=MEDIUM, parallel=True,
        ),
    ))


def integrity_stage() -> Stage:
    hashes = (
        "echo '### sha256 critical binaries'; "
        f"for bin in {' '.join(CRITICAL_BINARIES)}; do "
        "if [ -f \"$bin\" ]; then sha256sum \"$bin\"; fi; done"
    )
    return Stage("integrity", (
        _task("critical_bin_hashes", "integrity", hashes, required=True, parallel=True),
        _task(
            "dpkg_verify", "integrity",
            "if command -v dpkg >/dev/null 2>&1; then dpkg --verify || true; fi",
            merge_stderr=True, timeout_class=LONG, parallel=True, paranoid_only=True,
        ),
    ))


def timeline_stage() -> Stage:
    sources = " ".join(
        f"cat filesystem/{name}.txt 2>/dev/null;"
        for name in ("recent_exec_system", "recent_home_files_top3000", "suid_sgid_all")
    )
    return Stage("timeline", (
        _task(
            "unified_timeline_top1000", "summary",
            f"{{ {sources} true; }} | sed '/^$/d' | sort -r | sed -n '1,1000p'",
        ),
    ))


def hardening_stage(config: Configuration) -> Stage:
    tasks = [
        _task(
            "home_permissions", "summary",
            r"find /home -maxdepth 2 -type d \( -name '.config' -o -name '.local' -o -name '.ssh' \)"
            r" -exec chmod -R go-rwx {} + 2>/dev/null || true",
            output="hardening_home_permissions.txt",
        ),
        _task("drop_caches", "summary", "sync; sysctl -w vm.drop_caches=3 || true", merge_stderr=True),
        _task("daemon_reload", "summary", "systemctl daemon-reload || true",
              output="hardening_daemon_reload.txt", merge_stderr=True),
    ]
    if config.ufw_default_deny:
        ufw = (
            "if command -v ufw >/dev/null 2>&1; then "
            "ufw --force enable || true; "
            "ufw default deny incoming || true; "
            "ufw default deny outgoing || true; "
            "for port in 53 80 443 22; do ufw allow out \"$port\" || true; done; "
            "ufw status verbose || true; "
            "else echo 'ufw not found; skipping.'; fi"
        )
        tasks.append(_task("ufw_status", "network", ufw, merge_stderr=True, paranoid_only=True))
    return Stage("hardening", tuple(tasks))


def build_catalog(config: Configuration) -> List[Stage]:
    """
    Assemble the sweep's stages in execution order for ``config``.

    Paranoid-only tasks are included here and filtered by the runner; the UFW
    task exists only when UFW_DEFAULT_DENY is set.
    """
    stages = [
        context_stage(),
        disruption_stage(),
        persistence_stage(),
        processes_stage(),
        filesystem_stage(config),
        network_stage(config),
        logs_stage(config),
        integrity_stage(),
        timeline_stage(),
        hardening_stage(config),
    ]
    logger.debug(f"Catalog built: {sum(len(s.tasks) for s in stages)} task(s) in {len(stages)} stage(s)")
    return stages


def task_names(stages: List[Stage]) -> List[str]:
    return [t.name for s in stages for t in s.tasks]
