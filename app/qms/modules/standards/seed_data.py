"""
ISO 9001:2015 reference data and idempotent seeders.

Used by scripts/init_db.py and by tests that need a realistic section tree.
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from app.qms.constants import ISO_9001_CLAUSES, TEMPLATE_IDS

from .models import AuditQuestion, ISOStandardSection

# (section_number, title, children)
ISO_9001_SECTIONS: list[tuple[str, str, list]] = [
    ("4", "Context of the Organization", [
        ("4.1", "Understanding the organization and its context", []),
        ("4.2", "Understanding the needs and expectations of interested parties", []),
        ("4.3", "Determining the scope of the quality management system", []),
        ("4.4", "Quality management system and its processes", []),
    ]),
    ("5", "Leadership", [
        ("5.1", "Leadership and commitment", [
            ("5.1.1", "General", []),
            ("5.1.2", "Customer focus", []),
        ]),
        ("5.2", "Policy", [
            ("5.2.1", "Establishing the quality policy", []),
            ("5.2.2", "Communicating the quality policy", []),
        ]),
        ("5.3", "Organizational roles, responsibilities and authorities", []),
    ]),
    ("6", "Planning", [
        ("6.1", "Actions to address risks and opportunities", []),
        ("6.2", "Quality objectives and planning to achieve them", []),
        ("6.3", "Planning of changes", []),
    ]),
    ("7", "Support", [
        ("7.1", "Resources", [
            ("7.1.1", "General", []),
            ("7.1.2", "People", []),
            ("7.1.3", "Infrastructure", []),
            ("7.1.4", "Environment for the operation of processes", []),
            ("7.1.5", "Monitoring and measuring resources", []),
            ("7.1.6", "Organizational knowledge", []),
        ]),
        ("7.2", "Competence", []),
        ("7.3", "Awareness", []),
        ("7.4", "Communication", []),
        ("7.5", "Documented information", [
            ("7.5.1", "General", []),
            ("7.5.2", "Creating and updating", []),
            ("7.5.3", "Control of documented information", []),
        ]),
    ]),
    ("8", "Operation", [
        ("8.1", "Operational planning and control", []),
        ("8.2", "Requirements for products and services", [
            ("8.2.1", "Customer communication", []),
            ("8.2.2", "Determining the requirements for products and services", []),
            ("8.2.3", "Review of the requirements for products and services", []),
            ("8.2.4", "Changes to requirements for products and services", []),
        ]),
        ("8.3", "Design and development of products and services", []),
        ("8.4", "Control of externally provided processes, products and services", []),
        ("8.5", "Production and service provision", [
            ("8.5.1", "Control of production and service provision", []),
            ("8.5.2", "Identification and traceability", []),
            ("8.5.3", "Property belonging to customers or external providers", []),
            ("8.5.4", "Preservation", []),
            ("8.5.5", "Post-delivery activities", []),
            ("8.5.6", "Control of changes", []),
        ]),
        ("8.6", "Release of products and services", []),
        ("8.7", "Control of nonconforming outputs", []),
    ]),
    ("9", "Performance Evaluation", [
        ("9.1", "Monitoring, measurement, analysis and evaluation", [
            ("9.1.1", "General", []),
            ("9.1.2", "Customer satisfaction", []),
            ("9.1.3", "Analysis and evaluation", []),
        ]),
        ("9.2", "Internal audit", []),
        ("9.3", "Management review", []),
    ]),
    ("10", "Improvement", [
        ("10.1", "General", []),
        ("10.2", "Nonconformity and corrective action", []),
        ("10.3", "Continual improvement", []),
    ]),
]

# (section_number, question_text)
AUDIT_QUESTIONS: list[tuple[str, str]] = [
    ("4.1", "Has the organization determined the external and internal issues relevant to its purpose and strategic direction?"),
    ("4.2", "Are the relevant interested parties and their requirements determined and monitored?"),
    ("4.3", "Is the scope of the QMS documented, including justification for any non-applicable requirements?"),
    ("4.4", "Are the QMS processes, their sequence, interactions, inputs and outputs determined?"),
    ("5.1.1", "Does top management take accountability for the effectiveness of the QMS?"),
    ("5.1.2", "Are customer and applicable statutory requirements determined, understood and consistently met?"),
    ("5.2.1", "Is a quality policy established that is appropriate to the purpose and context of the organization?"),
    ("5.2.2", "Is the quality policy communicated, understood and applied within the organization?"),
    ("5.3", "Are responsibilities and authorities for relevant roles assigned, communicated and understood?"),
    ("6.1", "Are risks and opportunities determined and actions planned to address them?"),
    ("6.2", "Are measurable quality objectives established at relevant functions and levels?"),
    ("6.3", "Are changes to the QMS carried out in a planned manner?"),
    ("7.1.2", "Are the persons necessary for effective operation of the QMS determined and provided?"),
    ("7.1.3", "Is the infrastructure necessary for process operation determined, provided and maintained?"),
    ("7.1.5", "Are monitoring and measuring resources suitable, maintained and calibrated where required?"),
    ("7.1.6", "Is the knowledge necessary for process operation determined, maintained and made available?"),
    ("7.2", "Is competence of persons doing work under the organization's control determined and evidenced?"),
    ("7.3", "Are persons aware of the quality policy, objectives and their contribution to QMS effectiveness?"),
    ("7.4", "Are internal and external communications relevant to the QMS determined?"),
    ("7.5.2", "Is documented information appropriately identified, formatted, reviewed and approved?"),
    ("7.5.3", "Is documented information controlled for availability, protection, distribution and retention?"),
    ("8.1", "Are operational processes planned, implemented and controlled to meet requirements?"),
    ("8.2.1", "Is communication with customers established for product information, enquiries and feedback?"),
    ("8.2.3", "Are requirements reviewed before committing to supply products and services?"),
    ("8.3", "Is a design and development process established, implemented and maintained?"),
    ("8.4", "Are externally provided processes, products and services controlled and providers evaluated?"),
    ("8.5.1", "Is production and service provision implemented under controlled conditions?"),
    ("8.5.2", "Are outputs identified and traceable where required?"),
    ("8.6", "Are planned arrangements verified before release of products and services?"),
    ("8.7", "Are nonconforming outputs identified and controlled to prevent unintended use or delivery?"),
    ("9.1.2", "Is customer perception of the degree to which needs and expectations are fulfilled monitored?"),
    ("9.1.3", "Are appropriate data analysed and evaluated to assess QMS performance?"),
    ("9.2", "Are internal audits conducted at planned intervals against an audit programme?"),
    ("9.3", "Does top management review the QMS at planned intervals with the required inputs and outputs?"),
    ("10.2", "When a nonconformity occurs, is it reacted to, its cause evaluated and corrective action taken?"),
    ("10.3", "Is the suitability, adequacy and effectiveness of the QMS continually improved?"),
]

TEMPLATE_DEFINITIONS: list[dict] = [
    {
        "id": TEMPLATE_IDS["FULL"],
        "name": "Full ISO 9001:2015 Assessment",
        "description": "Comprehensive assessment covering all clauses (4-10) of ISO 9001:2015.",
        "is_default": True,
        "included_clauses": None,
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["QUICK_CHECK"],
        "name": "Quick Check Assessment",
        "description": "Essential QMS requirements across every clause, for quarterly reviews.",
        "is_default": False,
        "included_clauses": list(ISO_9001_CLAUSES),
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["LEADERSHIP"],
        "name": "Leadership & Planning Focus",
        "description": "Leadership commitment, quality policy, roles, risks and quality objectives.",
        "is_default": False,
        "included_clauses": ["5", "6"],
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["OPERATIONS"],
        "name": "Operations & Delivery Focus",
        "description": "Customer requirements, design, supplier control, production and release.",
        "is_default": False,
        "included_clauses": ["8"],
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["DOCUMENTATION"],
        "name": "Documentation & Support Review",
        "description": "Resources, competence, awareness, communication and documented information.",
        "is_default": False,
        "included_clauses": ["7"],
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["STRATEGIC"],
        "name": "Strategic Planning Assessment",
        "description": "Context, stakeholders, risk, objectives, performance and improvement.",
        "is_default": False,
        "included_clauses": ["4", "6", "9", "10"],
        "included_sections": None,
    },
    {
        "id": TEMPLATE_IDS["PERFORMANCE"],
        "name": "Performance & Improvement Review",
        "description": "Monitoring, internal audit, management review and corrective action.",
        "is_default": False,
        "included_clauses": ["9", "10"],
        "included_sections": None,
    },
]


def seed_standards(s: Session) -> dict[str, ISOStandardSection]:
    """Create missing sections and questions. Existing rows are left untouched."""
    existing = {sec.section_number: sec for sec in s.query(ISOStandardSection).all()}

    def ensure(number: str, title: str, order: int, parent: ISOStandardSection | None) -> ISOStandardSection:
        sec = existing.get(number)
        if sec is None:
            sec = ISOStandardSection(section_number=number, title=title, order=order, parent=parent)
            s.add(sec)
            existing[number] = sec
        return sec

    def walk(nodes: list, parent: ISOStandardSection | None) -> None:
        for order, (number, title, children) in enumerate(nodes, start=1):
            sec = ensure(number, title, order, parent)
            walk(children, sec)

    walk(ISO_9001_SECTIONS, None)
    s.flush()

    known_numbers = {row[0] for row in s.query(AuditQuestion.question_number).all()}
    per_section: dict[str, int] = {}
    for section_number, text in AUDIT_QUESTIONS:
        per_section[section_number] = per_section.get(section_number, 0) + 1
        question_number = f"{section_number}-{per_section[section_number]:02d}"
        if question_number in known_numbers:
            continue
        s.add(
            AuditQuestion(
                section=existing[section_number],
                question_number=question_number,
                question_text=text,
                standard_reference=f"ISO 9001:2015 {section_number}",
                order=per_section[section_number],
                is_active=True,
            )
        )
    s.flush()
    return existing


def seed_templates(s: Session, organization_id: int) -> int:
    """Upsert the predefined templates for one organization. Returns how many exist afterwards."""
    from app.qms.modules.assessments.models import AssessmentTemplate

    for definition in TEMPLATE_DEFINITIONS:
        template = s.get(AssessmentTemplate, definition["id"])
        if template is None:
            template = AssessmentTemplate(id=definition["id"], organization_id=organization_id)
            s.add(template)
        template.name = definition["name"]
        template.description = definition["description"]
        template.is_default = definition["is_default"]
        template.included_clauses = definition["included_clauses"]
        template.included_sections = definition["included_sections"]
    s.flush()
    return s.query(AssessmentTemplate).filter(AssessmentTemplate.organization_id == organization_id).count()
