"""iacguard - policy-driven audit and remediation for Terraform configuration.

Pipeline:
1. Parser -> resource records from raw HCL text
2. Policies -> security/cost checks over the records
3. Audit -> scored, grouped violations with a cost estimate
4. Delta -> what changed between two versions of a template
5. Remediation -> before/after patches for auto-fixable violations
6. Agents -> plan/review/apply sessions over versioned templates
"""

__version__ = "0.1.0"
