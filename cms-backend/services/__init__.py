"""
Workflow services
cms-backend/services/

Question lifecycle, in hand-off order:
1. Package Intake    : question maker submits a source document as a package
2. Question Authoring: data entry turns a package into numbered questions
3. QC Workflow       : reviewer claims, classifies difficulty, accepts or rejects
4. Revision Workflow : request / acceptance / recreation hand-offs between roles
5. Quota             : caps how many questions one reviewer holds at once

Boundaries: storage (object store), google_drive (secondary document copy), uploads (glue).
"""
