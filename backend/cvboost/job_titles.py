from __future__ import annotations

JOB_CATEGORIES = (
    "General Application",
    "Student / Intern",
    "Career Change",
    "Entry Level Position",
    "Senior / Leadership Role",
)

_RAW_JOB_TITLES = (
    # Broad categories
    "General Application",
    "Student / Intern",
    "Career Change",
    "Entry Level Position",
    "Senior / Leadership Role",

    # Technology & software
    "Software Engineer",
    "Senior Software Engineer",
    "Staff Software Engineer",
    "Principal Engineer",
    "Frontend Developer",
    "Backend Developer",
    "Full Stack Developer",
    "Mobile Developer",
    "iOS Developer",
    "Android Developer",
    "DevOps Engineer",
    "Site Reliability Engineer",
    "Cloud Engineer",
    "Data Engineer",
    "Machine Learning Engineer",
    "AI Engineer",
    "Data Scientist",
    "Data Analyst",
    "Business Intelligence Analyst",
    "QA Engineer",
    "Test Automation Engineer",
    "Security Engineer",
    "Cybersecurity Analyst",
    "Network Engineer",
    "Systems Administrator",
    "Database Administrator",
    "Solutions Architect",
    "Technical Architect",
    "Engineering Manager",
    "VP of Engineering",
    "CTO",
    "Technical Lead",
    "Scrum Master",
    "Agile Coach",

    # Product & design
    "Product Manager",
    "Senior Product Manager",
    "Product Owner",
    "Product Designer",
    "UX Designer",
    "UI Designer",
    "UX Researcher",
    "Interaction Designer",
    "Visual Designer",
    "Graphic Designer",
    "Brand Designer",
    "Creative Director",
    "Art Director",
    "Design Lead",
    "Head of Product",
    "Chief Product Officer",

    # Marketing
    "Marketing Manager",
    "Digital Marketing Manager",
    "Content Marketing Manager",
    "SEO Specialist",
    "SEM Specialist",
    "Social Media Manager",
    "Growth Marketing Manager",
    "Performance Marketing Manager",
    "Email Marketing Specialist",
    "Marketing Analyst",
    "Brand Manager",
    "Communications Manager",
    "PR Specialist",
    "Content Writer",
    "Copywriter",
    "Marketing Coordinator",
    "CMO",
    "VP of Marketing",

    # Sales & business development
    "Sales Representative",
    "Account Executive",
    "Sales Manager",
    "Business Development Representative",
    "Business Development Manager",
    "Account Manager",
    "Customer Success Manager",
    "Sales Engineer",
    "Solutions Consultant",
    "Partnership Manager",
    "VP of Sales",
    "Chief Revenue Officer",

    # Finance & accounting
    "Financial Analyst",
    "Senior Financial Analyst",
    "Accountant",
    "Senior Accountant",
    "Controller",
    "CFO",
    "Investment Analyst",
    "Investment Banker",
    "Portfolio Manager",
    "Risk Analyst",
    "Auditor",
    "Tax Specialist",
    "Bookkeeper",
    "Accounts Payable Specialist",
    "Accounts Receivable Specialist",
    "Payroll Specialist",
    "Treasury Analyst",

    # Human resources
    "HR Manager",
    "HR Business Partner",
    "Recruiter",
    "Technical Recruiter",
    "Talent Acquisition Specialist",
    "HR Coordinator",
    "HR Generalist",
    "Compensation Analyst",
    "Benefits Specialist",
    "Training Specialist",
    "Learning & Development Manager",
    "CHRO",
    "VP of People",

    # Operations & project management
    "Operations Manager",
    "Project Manager",
    "Program Manager",
    "Technical Program Manager",
    "Operations Analyst",
    "Business Analyst",
    "Process Improvement Specialist",
    "Supply Chain Manager",
    "Logistics Manager",
    "Procurement Specialist",
    "Vendor Manager",
    "COO",

    # Customer service & support
    "Customer Service Representative",
    "Customer Support Specialist",
    "Technical Support Specialist",
    "Help Desk Analyst",
    "Customer Service Manager",
    "Support Engineer",

    # Healthcare
    "Registered Nurse",
    "Nurse Practitioner",
    "Physician Assistant",
    "Medical Assistant",
    "Healthcare Administrator",
    "Clinical Research Coordinator",
    "Pharmacist",
    "Physical Therapist",
    "Occupational Therapist",
    "Medical Technologist",
    "Radiologic Technologist",
    "Healthcare Consultant",

    # Legal
    "Attorney",
    "Lawyer",
    "Paralegal",
    "Legal Assistant",
    "Compliance Officer",
    "Contract Manager",
    "General Counsel",
    "Legal Counsel",

    # Education
    "Teacher",
    "Professor",
    "Instructional Designer",
    "Academic Advisor",
    "School Administrator",
    "Curriculum Developer",
    "Tutor",
    "Education Coordinator",

    # Creative & media
    "Video Producer",
    "Video Editor",
    "Photographer",
    "Motion Designer",
    "Animator",
    "3D Artist",
    "Game Designer",
    "Sound Designer",
    "Journalist",
    "Editor",
    "Producer",

    # Consulting
    "Management Consultant",
    "Strategy Consultant",
    "IT Consultant",
    "Business Consultant",
    "Senior Consultant",
    "Principal Consultant",
    "Consultant",

    # Executive
    "CEO",
    "General Manager",
    "Executive Director",
    "Managing Director",
    "Vice President",
    "Senior Vice President",
    "Director",
    "Senior Director",

    # Other common roles
    "Research Scientist",
    "Research Associate",
    "Administrative Assistant",
    "Executive Assistant",
    "Office Manager",
    "Receptionist",
    "Real Estate Agent",
    "Insurance Agent",
    "Financial Advisor",
    "Personal Trainer",
    "Chef",
    "Restaurant Manager",
    "Event Coordinator",
    "Nonprofit Manager",
    "Volunteer Coordinator",
    "Social Worker",
    "Counselor",
    "Psychologist",
)

JOB_TITLES: tuple[str, ...] = tuple(dict.fromkeys(_RAW_JOB_TITLES))


def search_job_titles(query: str) -> list[str]:
    needle = query.strip().lower()
    if not needle:
        return list(JOB_TITLES)
    return [title for title in JOB_TITLES if needle in title.lower()]


def is_valid_job_title(title: str) -> bool:
    return title in JOB_TITLES
