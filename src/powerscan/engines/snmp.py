"""
SNMP discovery of power devices.

Each address of a range is asked for sysDescr and sysObjectID. The
agent's enterprise OID selects the MIB the snmp-ups driver should load;
agents outside the known enterprises are still accepted when they
implement the standard UPS-MIB (RFC 1628).
"""

from __future__ import annotations

import logging
from typing import Optional

try:
    import pysnmp.hlapi.v3arch.asyncio as hlapi
    from pysnmp.proto.rfc1905 import EndOfMibView, NoSuchInstance, NoSuchObject
    PYSNMP_AVAILABLE = True
except ImportError:
    PYSNMP_AVAILABLE = False
    hlapi = None
    EndOfMibView = NoSuchInstance = NoSuchObject = None

from .._types import BackendType, Device, SnmpOptions
from ..exceptions import EngineUnavailableError
from .base import ScanEngine, probe_range

logger = logging.getLogger(__name__)

SNMP_PORT = 161
DEFAULT_COMMUNITY = "public"

SYS_DESCR_OID = "1.3.6.1.2.1.1.1.0"
SYS_OBJECT_ID_OID = "1.3.6.1.2.1.1.2.0"
UPS_IDENT_MODEL_OID = "1.3.6.1.2.1.33.1.1.2.0"

# sysObjectID prefix -> snmp-ups MIB name; longest prefix wins
MIB_BY_ENTERPRISE = {
    "1.3.6.1.4.1.705.1": "mge",
    "1.3.6.1.4.1.534.1": "pw",
    "1.3.6.1.4.1.534.6.6.7": "eaton_epdu",
    "1.3.6.1.4.1.534.6.6.2": "aphel_revelation",
    "1.3.6.1.4.1.318": "apcc",
    "1.3.6.1.4.1.232.165": "cpqpower",
    "1.3.6.1.4.1.3808": "cyberpower",
    "1.3.6.1.4.1.2254.2.4": "delta_ups",
    "1.3.6.1.4.1.13742": "raritan",
    "1.3.6.1.4.1.850": "tripplite",
    "1.3.6.1.4.1.476.1.42": "emerson_avocent_pdu",
    "1.3.6.1.4.1.4555.1.1.1": "netvision",
    "1.3.6.1.4.1.935": "xppc",
    "1.3.6.1.2.1.33": "ietf",
}

AUTH_PROTOCOLS = {
    "MD5": "usmHMACMD5AuthProtocol",
    "SHA": "usmHMACSHAAuthProtocol",
    "SHA256": "usmHMAC192SHA256AuthProtocol",
    "SHA384": "usmHMAC256SHA384AuthProtocol",
    "SHA512": "usmHMAC384SHA512AuthProtocol",
}

PRIV_PROTOCOLS = {
    "DES": "usmDESPrivProtocol",
    "AES": "usmAesCfb128Protocol",
    "AES192": "usmAesCfb192Protocol",
    "AES256": "usmAesCfb256Protocol",
}


def match_mib(sys_object_id: str) -> Optional[str]:
    """Get the MIB name for an agent's sysObjectID, if it is known."""
    oid = sys_object_id.strip().lstrip(".")
    best = None
    for prefix in MIB_BY_ENTERPRISE:
        if oid == prefix or oid.startswith(prefix + "."):
            if best is None or len(prefix) > len(best):
                best = prefix
    return MIB_BY_ENTERPRISE[best] if best else None


def device_options(options: SnmpOptions, mibs: str, desc: str = "") -> dict[str, str]:
    """Driver options for one discovered agent."""
    result: dict[str, str] = {}
    if desc:
        result["desc"] = desc
    result["mibs"] = mibs

    if options.is_v3:
        result["secLevel"] = options.sec_level
        if options.sec_name:
            result["secName"] = options.sec_name
        if options.auth_password:
            result["authPassword"] = options.auth_password
        if options.priv_password:
            result["privPassword"] = options.priv_password
        if options.auth_protocol:
            result["authProtocol"] = options.auth_protocol
        if options.priv_protocol:
            result["privProtocol"] = options.priv_protocol
    elif options.community:
        result["community"] = options.community
    return result


def _auth_data(options: SnmpOptions):
    """Build pysnmp authentication data for v1 or v3."""
    if not options.is_v3:
        return hlapi.CommunityData(options.community or DEFAULT_COMMUNITY, mpModel=0)

    level = options.sec_level
    kwargs = {}
    if level in ("authNoPriv", "authPriv"):
        kwargs["authKey"] = options.auth_password
        protocol = AUTH_PROTOCOLS.get((options.auth_protocol or "MD5").upper())
        if protocol:
            kwargs["authProtocol"] = getattr(hlapi, protocol)
    if level == "authPriv":
        kwargs["privKey"] = options.priv_password
        protocol = PRIV_PROTOCOLS.get((options.priv_protocol or "DES").upper())
        if protocol:
            kwargs["privProtocol"] = getattr(hlapi, protocol)
    return hlapi.UsmUserData(options.sec_name or "", **kwargs)


class SnmpEngine(ScanEngine):
    """Scan address ranges for SNMP power devices."""

    backend = BackendType.SNMP

    def is_available(self) -> bool:
        return PYSNMP_AVAILABLE

    async def scan(
        self,
        start: Optional[str],
        end: Optional[str],
        timeout: float,
        options: Optional[SnmpOptions] = None,
    ) -> list[Device]:
        if not PYSNMP_AVAILABLE:
            raise EngineUnavailableError(self.name, "pysnmp")
        if start is None or end is None:
            logger.debug("SNMP scan needs an address range, nothing to do")
            return []

        options = options or SnmpOptions()
        snmp_engine = hlapi.SnmpEngine()
        auth = _auth_data(options)

        async def probe(address: str) -> list[Device]:
            return await self._probe_host(snmp_engine, auth, address, timeout, options)

        try:
            devices = await probe_range(start, end, probe)
        finally:
            snmp_engine.close_dispatcher()

        logger.debug(f"SNMP scan of {start} .. {end} found {len(devices)} devices")
        return devices

    async def _get(self, snmp_engine, auth, target, *oids: str) -> Optional[list]:
        """GET the given OIDs; None when the agent did not answer cleanly."""
        error_indication, error_status, _, var_binds = await hlapi.get_cmd(
            snmp_engine,
            auth,
            target,
            hlapi.ContextData(),
            *(hlapi.ObjectType(hlapi.ObjectIdentity(oid)) for oid in oids),
        )
        if error_indication or error_status:
            return None
        values = [value for _, value in var_binds]
        if any(isinstance(value, (NoSuchObject, NoSuchInstance, EndOfMibView)) for value in values):
            return None
        return values

    async def _probe_host(
        self,
        snmp_engine,
        auth,
        address: str,
        timeout: float,
        options: SnmpOptions,
    ) -> list[Device]:
        """Identify the agent at one address."""
        target = await hlapi.UdpTransportTarget.create(
            (address, SNMP_PORT),
            timeout=timeout,
            retries=0,
        )

        values = await self._get(snmp_engine, auth, target, SYS_DESCR_OID, SYS_OBJECT_ID_OID)
        if values is None:
            return []

        desc = values[0].prettyPrint() if values[0] is not None else ""
        mibs = match_mib(values[1].prettyPrint())
        if mibs is None:
            ident = await self._get(snmp_engine, auth, target, UPS_IDENT_MODEL_OID)
            if not ident or not ident[0].prettyPrint():
                logger.debug(f"SNMP agent at {address} is not a known power device")
                return []
            mibs = "ietf"

        logger.debug(f"SNMP power device at {address} (mibs={mibs})")
        return [Device(
            type=self.backend,
            driver="snmp-ups",
            port=address,
            options=device_options(options, mibs, desc),
        )]
