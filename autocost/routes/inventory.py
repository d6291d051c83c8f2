import pandas as pd
from flask import Blueprint, current_app, g, jsonify, request
from flask_babel import gettext as _
from werkzeug.utils import secure_filename
from ..models import db, RawMaterial, ValidationError
from .utils import login_required, log_audit, transaction, parse_name, parse_cost
from .raw_materials import reprice_raw_material

inventory_blueprint = Blueprint('inventory', __name__)

REQUIRED_COLUMNS = ('name', 'cost')

def read_cost_sheet(file):
    """Read an uploaded CSV or Excel sheet into a DataFrame with normalized column names"""
    filename = secure_filename(file.filename or '')
    if not filename:
        raise ValidationError(_('No file selected'), field='file')

    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if extension not in ('csv', 'xlsx'):
        raise ValidationError(_('Unsupported file type: upload a .csv or .xlsx file'), field='file')

    try:
        if extension == 'csv':
            df = pd.read_csv(file)
        else:
            df = pd.read_excel(file)
    except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        current_app.logger.error(f"Cost sheet upload error ({filename}): {str(e)}")
        raise ValidationError(_('Error processing file: {}').format(str(e)), field='file') from e

    # Normalize column names (strip whitespace, case-insensitive)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(_('Missing column(s): {}').format(', '.join(missing)), field='file')
    return df

def import_raw_material_costs(tenant_id, df):
    """
    Create or re-price materials from (name, cost) rows.

    Invalid rows are skipped and reported. Everything else, including the
    recalculation of affected products, commits as one transaction.
    """
    summary = {'created': 0, 'updated': 0, 'skipped': [], 'recalculatedProducts': 0}

    with transaction('import raw material costs'):
        for index, row in df.iterrows():
            row_number = index + 2  # Header is row 1

            if pd.isna(row['name']):
                summary['skipped'].append({'row': row_number, 'error': _('name is required')})
                continue
            try:
                name = parse_name(str(row['name']))
                cost = parse_cost(float(row['cost']))
            except (TypeError, ValueError):
                summary['skipped'].append({'row': row_number, 'error': _('cost must be a number')})
                continue
            except ValidationError as e:
                summary['skipped'].append({'row': row_number, 'error': str(e)})
                continue

            material = RawMaterial.query.filter_by(tenant_id=tenant_id, name=name).first()
            if material:
                summary['recalculatedProducts'] += reprice_raw_material(material, cost)
                summary['updated'] += 1
            else:
                material = RawMaterial(tenant_id=tenant_id, name=name, cost=cost)
                db.session.add(material)
                db.session.flush()
                log_audit(tenant_id, "CREATE", "RawMaterial", material.id, f"Imported raw material {name} at {cost}")
                summary['created'] += 1

        log_audit(tenant_id, "IMPORT", "RawMaterial",
                  details=f"Created {summary['created']}, updated {summary['updated']}, "
                          f"skipped {len(summary['skipped'])} row(s)")

    current_app.logger.info(
        f"Cost sheet imported for tenant {tenant_id}: {summary['created']} created, "
        f"{summary['updated']} updated, {len(summary['skipped'])} skipped"
    )
    return summary

# ----------------------------
# Bulk Cost Upload
# ----------------------------
@inventory_blueprint.route('/api/raw-materials/import', methods=['POST'])
@login_required
def upload_cost_sheet():
    if 'file' not in request.files:
        raise ValidationError(_('No file uploaded'), field='file')

    df = read_cost_sheet(request.files['file'])
    return jsonify(import_raw_material_costs(g.tenant_id, df))
