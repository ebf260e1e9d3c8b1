"""
Command-line entry point.

Looks up each target computer in the directory, checks it is reachable, then runs the
session probes against it with a pool of worker threads.
"""

import argparse
import logging
import random
import socket
import sys
import threading
import time
from queue import Empty, Queue
from typing import Callable, List, Optional

from . import __version__
from .aggregator import SessionAggregator
from .config import CollectionOptions, ConfigurationError, Credentials, parse_domain_aliases, parse_hash
from .directory import LdapDirectory
from .models import Host
from .resolver import is_placeholder_identifier
from .rpc import DNSResolver, RpcTransport, is_ip_address
from .status import StatusLog


SMB_PORT = 445


# ============================================================================
# THREADING AND ORCHESTRATION
# ============================================================================

class SessionSweepOrchestrator:
    """
    Runs session discovery across many hosts with a fixed number of worker threads.
    Handles progress tracking and rate limiting.
    """

    def __init__(self, aggregator: SessionAggregator, hosts: List[Host],
                 threads: int = 10, delay: float = 0, jitter: int = 0):
        """
        Initialize the orchestrator.

        Args:
            aggregator: SessionAggregator instance
            hosts: Hosts to process
            threads: Number of concurrent threads
            delay: Delay between hosts in seconds
            jitter: Jitter percentage (0-100)
        """
        self.aggregator = aggregator
        self.hosts = hosts
        self.threads = max(1, min(threads, len(hosts)))
        self.delay = delay
        self.jitter = jitter
        self.logger = logging.getLogger('Orchestrator')

        self.host_queue: Queue = Queue()
        self.progress_lock = threading.Lock()
        self.completed = 0
        self.total = len(hosts)

    def _calculate_delay(self) -> float:
        """
        Calculate delay with jitter applied.

        Returns:
            Delay time in seconds
        """
        if self.delay == 0:
            return 0

        if self.jitter > 0:
            jitter_amount = self.delay * (self.jitter / 100.0)
            jitter_value = random.uniform(-jitter_amount, jitter_amount)
            return max(0, self.delay + jitter_value)

        return self.delay

    def _worker(self):
        while True:
            try:
                host = self.host_queue.get_nowait()
            except Empty:
                break

            try:
                if self.delay > 0:
                    time.sleep(self._calculate_delay())

                self.aggregator.discover_sessions(host)

                with self.progress_lock:
                    self.completed += 1
                    if self.completed % 10 == 0 or self.completed == self.total:
                        self.logger.info(f"Progress: {self.completed}/{self.total} hosts processed")

            except Exception as e:
                self.logger.warning(f"Worker error processing {host.name}: {e}")
            finally:
                self.host_queue.task_done()

    def run(self) -> List[Host]:
        """
        Run discovery for every host.

        Returns:
            The hosts, with their session sets updated
        """
        if not self.hosts:
            return []

        for host in self.hosts:
            self.host_queue.put(host)

        workers = []
        for _ in range(self.threads):
            t = threading.Thread(target=self._worker, daemon=True)
            t.start()
            workers.append(t)

        self.host_queue.join()
        return self.hosts


# ============================================================================
# HOST PREPARATION
# ============================================================================

def check_port_open(address: str, port: int = SMB_PORT, timeout: float = 2.0) -> bool:
    """
    Check whether a TCP port accepts connections.

    Args:
        address: Hostname or IP
        port: TCP port
        timeout: Connect timeout in seconds

    Returns:
        True if the connection succeeded
    """
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


def build_hosts(targets: List[str], directory: LdapDirectory, domain: str,
                reachable: Callable[[str], bool]) -> List[Host]:
    """
    Turn target names into Host records.

    Targets unknown to the directory are skipped.

    Args:
        targets: Computer names
        directory: Directory used to look up the computer SIDs
        domain: Domain the computers belong to
        reachable: Reachability check for a host name

    Returns:
        Hosts, in target order
    """
    logger = logging.getLogger('SessionSweep')
    hosts = []
    for target in targets:
        info = directory.lookup_computer(target)
        if not info:
            logger.warning(f"Computer not found in directory, skipping: {target}")
            continue

        name = info['dns_name'] or target
        hosts.append(Host(
            name=name,
            object_identifier=info['object_identifier'],
            domain=domain.upper(),
            sam_account_name=info['sam_account_name'],
            reachable=reachable(name),
        ))
    return hosts


# ============================================================================
# MAIN APPLICATION
# ============================================================================

def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='sessionsweep',
        description='SessionSweep - Active Directory session discovery',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Sessions on two hosts:
    %(prog)s -u administrator -p 'Password123' -d contoso.local --dc-ip 10.0.0.1 \\
        ws01.contoso.local ws02.contoso.local

  Pass-the-hash with a target file and per-probe status output:
    %(prog)s -u administrator -H aad3b435b51404eeaad3b435b51404ee:8846f7eaee8fb117ad06bdd830b7586c \\
        -d contoso.local --dc-ip 10.0.0.1 --target-file computers.txt --dump-status
        """
    )

    auth_group = parser.add_argument_group('Authentication')
    auth_group.add_argument('-u', '--username', required=True,
                            help='Domain username')
    auth_group.add_argument('-p', '--password', default='',
                            help='Password for authentication')
    auth_group.add_argument('-H', '--hash', dest='nthash',
                            help='NT hash for pass-the-hash (format: LMHASH:NTHASH or just NTHASH)')
    auth_group.add_argument('-d', '--domain', required=True,
                            help='Target domain (e.g., contoso.local)')
    auth_group.add_argument('--dc-ip', required=True,
                            help='Domain Controller IP address (LDAP and global catalog)')
    auth_group.add_argument('--dns', '-ns', dest='dns_server',
                            help='DNS server IP address for hostname resolution (defaults to --dc-ip)')

    target_group = parser.add_argument_group('Target Specification')
    target_group.add_argument('targets', nargs='*',
                              help='Computer names to enumerate')
    target_group.add_argument('--target-file',
                              help='File with one computer name per line')

    ops_group = parser.add_argument_group('Operational Parameters')
    ops_group.add_argument('-t', '--threads', type=int, default=10,
                           help='Number of hosts processed concurrently (default: 10)')
    ops_group.add_argument('--timeout', type=int, default=5,
                           help='Connection timeout per host in seconds (default: 5)')
    ops_group.add_argument('--probe-timeout', type=float, default=10.0,
                           help='Seconds to wait on each enumeration call (default: 10)')
    ops_group.add_argument('--no-registry', action='store_true',
                           help='Skip the Remote Registry (HKEY_USERS) logged-on source')
    ops_group.add_argument('--dump-status', action='store_true',
                           help='Report the outcome of every probe on every host')
    ops_group.add_argument('--skip-port-check', action='store_true',
                           help='Treat every host as reachable')

    adv_group = parser.add_argument_group('Advanced Options')
    adv_group.add_argument('--domain-alias', action='append', default=[], metavar='NETBIOS=DNS',
                           help='Map a NetBIOS domain name to its DNS name (repeatable)')
    adv_group.add_argument('--delay', type=float, default=0,
                           help='Delay between hosts in seconds (default: 0)')
    adv_group.add_argument('--jitter', type=int, default=0,
                           help='Add random jitter to delays, percentage 0-100 (default: 0)')
    adv_group.add_argument('-v', '--verbose', action='store_true',
                           help='Enable verbose logging')
    adv_group.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)

    if not args.password and not args.nthash:
        parser.error("Either --password or --hash must be provided")

    if not args.targets and not args.target_file:
        parser.error("Give at least one target or --target-file")

    if args.jitter < 0 or args.jitter > 100:
        parser.error("Jitter must be between 0 and 100")

    if args.threads < 1:
        parser.error("Threads must be at least 1")

    if args.dns_server and not is_ip_address(args.dns_server):
        parser.error(f"Invalid IP address format for --dns: {args.dns_server}")

    return args


def setup_logging(verbose: bool):
    """
    Configure logging based on verbosity level.

    Args:
        verbose: Enable verbose logging
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )

    # Reduce impacket verbosity
    logging.getLogger('impacket').setLevel(logging.WARNING)


def load_targets_from_file(file_path: str) -> List[str]:
    """
    Load target hosts from a file.

    Args:
        file_path: Path to file containing targets (one per line, # comments allowed)

    Returns:
        List of target hostnames
    """
    targets = []
    with open(file_path, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                targets.append(line)
    return targets


def build_options(args: argparse.Namespace) -> CollectionOptions:
    return CollectionOptions(
        current_user_name=args.username,
        disable_registry_logged_on=args.no_registry,
        dump_computer_status=args.dump_status,
        probe_timeout=args.probe_timeout,
        domain_aliases=parse_domain_aliases(args.domain_alias),
    ).validate()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main application entry point.
    """
    args = parse_arguments(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger('SessionSweep')

    lmhash = ''
    nthash = ''
    if args.nthash:
        lmhash, nthash = parse_hash(args.nthash)

    try:
        options = build_options(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    credentials = Credentials(
        username=args.username,
        password=args.password,
        domain=args.domain,
        lmhash=lmhash,
        nthash=nthash,
    )

    targets = list(args.targets)
    if args.target_file:
        try:
            targets.extend(load_targets_from_file(args.target_file))
        except OSError as e:
            logger.error(f"Error loading targets from file: {e}")
            return 1

    dns_resolver = DNSResolver(dns_server=args.dns_server or args.dc_ip, timeout=args.timeout)
    directory = LdapDirectory(args.dc_ip, credentials, dns_resolver=dns_resolver)
    transport = RpcTransport(credentials, timeout=args.timeout, dns_resolver=dns_resolver)

    if args.skip_port_check:
        reachable = lambda name: True  # noqa: E731
    else:
        reachable = lambda name: check_port_open(dns_resolver.resolve_hostname(name),  # noqa: E731
                                                 timeout=args.timeout)

    hosts = build_hosts(targets, directory, args.domain, reachable)
    if not hosts:
        logger.error("No targets to process")
        return 1

    unreachable = [host.name for host in hosts if not host.reachable]
    if unreachable:
        logger.info(f"{len(unreachable)} hosts not reachable on port {SMB_PORT}, they will be skipped")

    status_log = StatusLog()
    aggregator = SessionAggregator.build(transport, directory, options, sink=status_log)

    logger.info(f"Starting session discovery on {len(hosts)} hosts with {args.threads} threads...")
    start_time = time.time()
    SessionSweepOrchestrator(aggregator, hosts, threads=args.threads,
                             delay=args.delay, jitter=args.jitter).run()
    logger.info(f"Collection completed in {time.time() - start_time:.2f} seconds")

    total = 0
    for host in hosts:
        for session in sorted(host.sessions, key=lambda s: (s.computer_id, s.user_id)):
            marker = ' (unresolved)' if is_placeholder_identifier(session.user_id) else ''
            print(f"{host.name}\t{session.user_id}\t{session.computer_id}{marker}")
            total += 1
    logger.info(f"Total unique sessions: {total}")

    if args.dump_status:
        for outcome in status_log.outcomes:
            print(f"{outcome.computer_name}\t{outcome.task.value}\t{outcome.status}")

    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n[!] Interrupted by user")
        sys.exit(1)
