"""Security posture analyzer — network exposure and Defender for Cloud."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from compass.schemas.assessment import AssessmentCategory, AssessmentType
from compass.schemas.findings import CategoryResult, Effort, Finding, Severity
from compass.schemas.inventory import Resource
from compass.services.analysis import AnalysisInputs, fetch_inventory, new_result, raise_if_cancelled
from compass.services.categories import runs
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode
from compass.services.scoring import SECURITY_PROFILE, ScoringEngine
from compass.services.sources import ResourceCatalogSource

logger = structlog.get_logger()

T = AssessmentType

NSG_TYPE = "microsoft.network/networksecuritygroups"
VNET_TYPE = "microsoft.network/virtualnetworks"
APP_GATEWAY_TYPE = "microsoft.network/applicationgateways"
PRICING_TYPE = "microsoft.security/pricings"
SECURITY_ASSESSMENT_TYPE = "microsoft.security/assessments"

INTERNET_SOURCES = {"*", "0.0.0.0/0", "internet", "any"}
ADMIN_PORTS = (22, 3389)
# Platform subnets that cannot carry an NSG
EXEMPT_SUBNETS = {"gatewaysubnet", "azurefirewallsubnet", "azurebastionsubnet", "routeserversubnet"}


def _finding(
    category: AssessmentType,
    resource: Resource,
    finding_type: str,
    severity: Severity,
    issue: str,
    recommendation: str,
    effort: Effort = Effort.MEDIUM,
) -> Finding:
    return Finding(
        category=category.value,
        finding_type=finding_type,
        resource_id=resource.id,
        resource_name=resource.name,
        resource_type=resource.type,
        severity=severity,
        issue=issue,
        recommendation=recommendation,
        effort=effort,
    )


def _rule_properties(rule: dict[str, Any]) -> dict[str, Any]:
    props = rule.get("properties")
    return props if isinstance(props, dict) else rule


def _port_ranges(props: dict[str, Any]) -> list[str]:
    ranges = list(props.get("destinationPortRanges") or [])
    if props.get("destinationPortRange"):
        ranges.append(str(props["destinationPortRange"]))
    return ranges


def port_range_includes(port_range: str, port: int) -> bool:
    port_range = port_range.strip()
    if port_range == "*":
        return True
    if "-" in port_range:
        low, _, high = port_range.partition("-")
        try:
            return int(low) <= port <= int(high)
        except ValueError:
            return False
    try:
        return int(port_range) == port
    except ValueError:
        return False


def _sources(props: dict[str, Any]) -> set[str]:
    sources = {str(s).lower() for s in props.get("sourceAddressPrefixes") or []}
    if props.get("sourceAddressPrefix"):
        sources.add(str(props["sourceAddressPrefix"]).lower())
    return sources


def analyze_network(resources: list[Resource]) -> tuple[list[Finding], dict[str, float]]:
    findings: list[Finding] = []
    nsgs = [r for r in resources if r.type_lower == NSG_TYPE]
    vnets = [r for r in resources if r.type_lower == VNET_TYPE]
    gateways = [r for r in resources if r.type_lower == APP_GATEWAY_TYPE]
    open_rules = 0
    permissive_rules = 0

    for nsg in nsgs:
        for rule in nsg.prop("securityRules", default=[]) or []:
            props = _rule_properties(rule)
            if str(props.get("direction", "")).lower() != "inbound" or str(props.get("access", "")).lower() != "allow":
                continue
            name = rule.get("name", "rule")
            ports = _port_ranges(props)
            if _sources(props) & INTERNET_SOURCES:
                open_rules += 1
                exposed = [p for p in ADMIN_PORTS if any(port_range_includes(r, p) for r in ports)]
                if exposed:
                    findings.append(_finding(
                        T.NETWORK_SECURITY, nsg, "AdminPortExposed", Severity.HIGH,
                        f"Rule '{name}' exposes management port(s) {', '.join(map(str, exposed))} to the internet.",
                        "Restrict the source range or use Azure Bastion or just-in-time access.",
                        Effort.LOW,
                    ))
                else:
                    findings.append(_finding(
                        T.NETWORK_SECURITY, nsg, "NsgRuleOpenToInternet", Severity.HIGH,
                        f"Rule '{name}' allows inbound traffic from any internet address.",
                        "Limit the rule to known source addresses.",
                        Effort.LOW,
                    ))
            elif "*" in ports:
                permissive_rules += 1
                findings.append(_finding(
                    T.NETWORK_SECURITY, nsg, "OverlyPermissiveRule", Severity.MEDIUM,
                    f"Rule '{name}' allows inbound traffic on all ports.",
                    "Restrict the rule to the ports the workload needs.",
                    Effort.LOW,
                ))

    for vnet in vnets:
        unprotected = [
            subnet.get("name", "subnet")
            for subnet in vnet.prop("subnets", default=[]) or []
            if str(subnet.get("name", "")).lower() not in EXEMPT_SUBNETS
            and not _rule_properties(subnet).get("networkSecurityGroup")
        ]
        if unprotected:
            findings.append(_finding(
                T.NETWORK_SECURITY, vnet, "VNetWithoutNsg", Severity.HIGH,
                "Subnets without a network security group: " + ", ".join(unprotected) + ".",
                "Associate a network security group with every workload subnet.",
            ))
        if not vnet.prop("enableDdosProtection"):
            findings.append(_finding(
                T.NETWORK_SECURITY, vnet, "NoDdosProtection", Severity.MEDIUM,
                "DDoS Network Protection is not enabled on the virtual network.",
                "Enable DDoS Network Protection for internet-facing workloads.",
                Effort.LOW,
            ))

    for gateway in gateways:
        tier = str(gateway.prop("sku", "tier", default="")).lower()
        waf_enabled = gateway.prop("webApplicationFirewallConfiguration", "enabled", default=False)
        if "waf" not in tier and not waf_enabled and not gateway.prop("firewallPolicy"):
            findings.append(_finding(
                T.NETWORK_SECURITY, gateway, "AppGatewayWithoutWaf", Severity.HIGH,
                "Application gateway has no web application firewall.",
                "Move to the WAF_v2 tier and attach a WAF policy.",
            ))

    counters = {
        "network_evaluated": 1.0,
        "network_resources": float(len(nsgs) + len(vnets) + len(gateways)),
        "network_security_groups": float(len(nsgs)),
        "virtual_networks": float(len(vnets)),
        "open_to_internet_rules": float(open_rules),
        "permissive_rules": float(permissive_rules),
    }
    return findings, counters


def analyze_defender(
    resources: list[Resource], mode: AccessMode
) -> tuple[list[Finding], dict[str, float], bool]:
    """Evaluate Defender plans and open recommendations.

    Returns the findings, counters and whether Defender data was available.
    """
    findings: list[Finding] = []
    pricings = [r for r in resources if r.type_lower == PRICING_TYPE]
    assessments = [r for r in resources if r.type_lower == SECURITY_ASSESSMENT_TYPE]

    if not pricings and mode == AccessMode.DEFAULT:
        return findings, {"defender_evaluated": 1.0}, False

    enabled_plans = [p for p in pricings if str(p.prop("pricingTier", default="")).lower() == "standard"]
    if not enabled_plans:
        anchor_id = resources[0].subscription_id if resources else ""
        findings.append(Finding(
            category=T.DEFENDER_FOR_CLOUD.value,
            finding_type="DefenderNotEnabled",
            resource_id=f"/subscriptions/{anchor_id}",
            resource_name=anchor_id or "subscription",
            resource_type="Microsoft.Resources/subscriptions",
            severity=Severity.HIGH,
            issue="No Defender for Cloud plan is enabled.",
            recommendation="Enable Defender for Cloud plans for the workloads in use.",
            effort=Effort.LOW,
        ))
    enabled_ids = {p.id for p in enabled_plans}
    for plan in pricings:
        if plan.id not in enabled_ids:
            findings.append(_finding(
                T.DEFENDER_FOR_CLOUD, plan, "DefenderPlanDisabled", Severity.LOW,
                f"Defender plan '{plan.name}' is on the free tier.",
                "Enable the plan if the matching workload is deployed.",
                Effort.LOW,
            ))

    high = medium = 0
    for item in assessments:
        if str(item.prop("status", "code", default="")).lower() != "unhealthy":
            continue
        severity_name = str(item.prop("metadata", "severity", default="Medium")).capitalize()
        try:
            severity = Severity(severity_name)
        except ValueError:
            severity = Severity.MEDIUM
        if severity == Severity.HIGH:
            high += 1
        elif severity == Severity.MEDIUM:
            medium += 1
        display = str(item.prop("displayName", default=item.name))
        findings.append(_finding(
            T.DEFENDER_FOR_CLOUD, item, "DefenderRecommendation", severity,
            f"Open security recommendation: {display}.",
            str(item.prop("metadata", "remediationDescription", default="Follow the remediation steps in Defender for Cloud.")),
        ))

    counters = {
        "defender_evaluated": 1.0,
        "defender_enabled": 1.0 if enabled_plans else 0.0,
        "defender_items": float(len(pricings) + len(assessments)),
        "defender_high_recommendations": float(high),
        "defender_medium_recommendations": float(medium),
    }
    return findings, counters, True


class SecurityPostureAnalyzer:
    """Scores network exposure and Defender for Cloud coverage."""

    category = AssessmentCategory.SECURITY_POSTURE

    def __init__(
        self,
        catalog: ResourceCatalogSource,
        collector: RateLimitedCollector,
        engine: ScoringEngine | None = None,
    ) -> None:
        self._catalog = catalog
        self._collector = collector
        self._engine = engine or ScoringEngine()

    async def analyze(
        self,
        inputs: AnalysisInputs,
        mode: AccessMode,
        cancel: asyncio.Event | None = None,
    ) -> CategoryResult:
        log = logger.bind(assessment_id=inputs.assessment_id, assessment_type=inputs.assessment_type.value)
        result = new_result(inputs, mode)
        resources = await fetch_inventory(self._collector, self._catalog, inputs, mode)
        result.details["resource_count"] = len(resources)
        applicable = 0.0

        if runs(inputs.assessment_type, T.NETWORK_SECURITY):
            raise_if_cancelled(cancel)
            findings, counters = analyze_network(resources)
            result.findings.extend(findings)
            result.counters.update(counters)
            applicable += counters["network_resources"]

        if runs(inputs.assessment_type, T.DEFENDER_FOR_CLOUD):
            raise_if_cancelled(cancel)
            findings, counters, available = analyze_defender(resources, mode)
            result.findings.extend(findings)
            result.counters.update(counters)
            if available:
                applicable += counters["defender_items"] or 1
            else:
                result.unavailable.add("defender")
                result.findings.append(Finding(
                    category=T.DEFENDER_FOR_CLOUD.value,
                    finding_type="DefenderAnalysisLimited",
                    resource_id=inputs.tenant.tenant_id or inputs.tenant.organization_id,
                    resource_name="Defender for Cloud",
                    resource_type="Microsoft.Security",
                    severity=Severity.LOW,
                    issue="Defender for Cloud data was not accessible with default credentials.",
                    recommendation="Grant Security Reader access to evaluate Defender coverage.",
                    effort=Effort.LOW,
                ))

        result.counters["applicable_items"] = applicable
        breakdown = self._engine.breakdown(result, SECURITY_PROFILE)
        result.sub_scores.update(breakdown.sub_scores)
        result.score = breakdown.score
        log.info("security_analysis_completed", findings=len(result.findings), score=result.score)
        return result
