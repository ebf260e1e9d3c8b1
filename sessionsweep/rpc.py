"""
Remote enumeration calls over SMB named pipes, using Impacket.

Each call returns its records together with the still-open DCE/RPC binding; the
binding is closed when the caller releases the ProbeResponse.
"""

import ipaddress
import logging
from typing import List, Optional

import dns.exception
import dns.resolver
import dns.reversename
from impacket.dcerpc.v5 import rrp, srvs, transport, wkst
from impacket.dcerpc.v5.dtypes import NULL
from impacket.dcerpc.v5.rpcrt import DCERPCException
from impacket.smbconnection import SessionError

from .config import Credentials
from .models import ProbeResponse, RawActiveSession, RawLoginRecord
from .status import ERROR_NO_MORE_ITEMS, NERR_SUCCESS, RPC_S_CALL_FAILED


# ============================================================================
# DNS RESOLUTION
# ============================================================================

class DNSResolver:
    """
    Handles DNS resolution using a specified DNS server (typically the DC).
    Falls back to the system configuration if no server is given.
    """

    def __init__(self, dns_server: Optional[str] = None, timeout: int = 5):
        """
        Initialize DNS resolver.

        Args:
            dns_server: DNS server IP to use for queries (typically DC IP)
            timeout: DNS query timeout in seconds
        """
        self.dns_server = dns_server
        self.timeout = timeout
        self.logger = logging.getLogger('DNSResolver')

        if self.dns_server:
            self.resolver = dns.resolver.Resolver(configure=False)
            self.resolver.nameservers = [self.dns_server]
            self.logger.debug(f"Configured DNS resolver to use {self.dns_server}")
        else:
            self.resolver = dns.resolver.Resolver()
            self.logger.debug("Using system DNS resolver")
        self.resolver.timeout = timeout
        self.resolver.lifetime = timeout

    def resolve_hostname(self, hostname: str) -> str:
        """
        Resolve a hostname to an IP address.

        Args:
            hostname: Hostname or FQDN to resolve

        Returns:
            IP address, or the hostname unchanged if resolution fails
            (Impacket will then try to resolve it on its own)
        """
        hostname = hostname.lstrip('\\').strip()
        if is_ip_address(hostname):
            return hostname

        try:
            answers = self.resolver.resolve(hostname, 'A')
            if answers:
                ip = str(answers[0])
                self.logger.debug(f"Resolved {hostname} -> {ip}")
                return ip
        except dns.exception.Timeout:
            self.logger.debug(f"DNS timeout resolving {hostname}")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers) as e:
            self.logger.debug(f"DNS lookup failed for {hostname}: {e}")

        return hostname

    def reverse_lookup(self, address: str) -> Optional[str]:
        """
        Resolve an IP address to a host name.

        Args:
            address: IPv4 or IPv6 address

        Returns:
            Host name without trailing dot, or None
        """
        try:
            answers = self.resolver.resolve(dns.reversename.from_address(address), 'PTR')
        except dns.exception.Timeout:
            self.logger.debug(f"DNS timeout on reverse lookup of {address}")
            return None
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers,
                dns.exception.SyntaxError) as e:
            self.logger.debug(f"Reverse lookup failed for {address}: {e}")
            return None

        for answer in answers:
            return str(answer).rstrip('.')
        return None


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip('[]'))
    except ValueError:
        return False
    return True


def _wstr(value) -> str:
    if value is None:
        return ''
    return str(value).rstrip('\x00')


def _error_code(error) -> int:
    if isinstance(error, SessionError):
        code = error.getErrorCode()
    else:
        code = error.get_error_code()
    return code if code is not None else RPC_S_CALL_FAILED


# ============================================================================
# RPC TRANSPORT
# ============================================================================

class RpcTransport:
    """
    Opens SRVSVC, WKSSVC and WINREG bindings against target hosts.
    """

    def __init__(self, credentials: Credentials, timeout: int = 5,
                 dns_resolver: Optional[DNSResolver] = None):
        """
        Initialize the transport.

        Args:
            credentials: Account used for the SMB connections
            timeout: Connection timeout in seconds
            dns_resolver: Optional DNS resolver for hostname resolution
        """
        self.credentials = credentials
        self.timeout = timeout
        self.dns_resolver = dns_resolver
        self.logger = logging.getLogger('RpcTransport')

    def _bind(self, target: str, pipe: str, interface):
        resolved_target = target
        if self.dns_resolver:
            resolved_target = self.dns_resolver.resolve_hostname(target)

        rpctransport = transport.DCERPCTransportFactory(f'ncacn_np:{resolved_target}[\\pipe\\{pipe}]')
        rpctransport.set_credentials(
            self.credentials.username, self.credentials.password, self.credentials.domain,
            self.credentials.lmhash, self.credentials.nthash
        )
        rpctransport.set_connect_timeout(self.timeout)

        dce = rpctransport.get_dce_rpc()
        dce.connect()
        try:
            dce.bind(interface)
        except Exception:
            dce.disconnect()
            raise
        return dce

    def _disconnect(self, dce, target: str):
        def release():
            try:
                dce.disconnect()
            except Exception as e:
                self.logger.debug(f"Error closing binding to {target}: {e}")
        return release

    def net_session_enum(self, target: str) -> ProbeResponse[RawActiveSession]:
        """
        List sessions established against a host (NetrSessionEnum, level 10).

        Args:
            target: Target hostname or IP

        Returns:
            ProbeResponse holding the open SRVSVC binding
        """
        try:
            dce = self._bind(target, 'srvsvc', srvs.MSRPC_UUID_SRVS)
        except (SessionError, DCERPCException) as e:
            return ProbeResponse(_error_code(e))

        release = self._disconnect(dce, target)
        try:
            resp = srvs.hNetrSessionEnum(dce, NULL, NULL, 10)
        except DCERPCException as e:
            release()
            return ProbeResponse(_error_code(e))
        except Exception:
            release()
            raise

        records = [
            RawActiveSession(client_name=_wstr(session['sesi10_cname']) or None,
                             username=_wstr(session['sesi10_username']))
            for session in resp['InfoStruct']['SessionInfo']['Level10']['Buffer']
        ]
        return ProbeResponse(NERR_SUCCESS, records, release=release)

    def net_wksta_user_enum(self, target: str) -> ProbeResponse[RawLoginRecord]:
        """
        List users logged on at a host (NetrWkstaUserEnum, level 1).

        Args:
            target: Target hostname or IP

        Returns:
            ProbeResponse holding the open WKSSVC binding
        """
        try:
            dce = self._bind(target, 'wkssvc', wkst.MSRPC_UUID_WKST)
        except (SessionError, DCERPCException) as e:
            return ProbeResponse(_error_code(e))

        release = self._disconnect(dce, target)
        try:
            resp = wkst.hNetrWkstaUserEnum(dce, 1)
        except DCERPCException as e:
            release()
            return ProbeResponse(_error_code(e))
        except Exception:
            release()
            raise

        records = [
            RawLoginRecord(username=_wstr(user['wkui1_username']),
                           domain=_wstr(user['wkui1_logon_domain']))
            for user in resp['UserInfo']['WkstaUserInfo']['Level1']['Buffer']
        ]
        return ProbeResponse(NERR_SUCCESS, records, release=release)

    def registry_user_keys(self, target: str) -> List[str]:
        """
        List the subkeys of HKEY_USERS over Remote Registry.

        Args:
            target: Target hostname or IP

        Returns:
            Subkey names

        Raises:
            SessionError, DCERPCException: If the registry cannot be read
        """
        dce = self._bind(target, 'winreg', rrp.MSRPC_UUID_RRP)
        try:
            reg_handle = rrp.hOpenUsers(dce)['phKey']
            subkeys = []
            try:
                index = 0
                while True:
                    try:
                        ans = rrp.hBaseRegEnumKey(dce, reg_handle, index)
                    except DCERPCException as e:
                        if e.get_error_code() == ERROR_NO_MORE_ITEMS:
                            break
                        raise
                    subkeys.append(_wstr(ans['lpNameOut']))
                    index += 1
            finally:
                rrp.hBaseRegCloseKey(dce, reg_handle)
            return subkeys
        finally:
            dce.disconnect()
