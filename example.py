# resolve a workbook stream with xlsprobe


import xlsprobe

if __name__ == "__main__":
    # Example usage of resolve_any on an .xls/.xlsx file
    from pathlib import Path
    from xlsprobe import ReaderConfiguration, resolve_any

    workbook_path = Path(r"samples\protected.xlsx")  # Replace with your workbook path
    try:
        with open(workbook_path, "rb") as source:
            resolved = resolve_any(source, ReaderConfiguration(password="VelvetSweatshop"))
            print(resolved.container.value, resolved.format.value, resolved.encrypted)
            print(resolved.stream.read(4))
    except xlsprobe.ExcelReaderError as e:
        print("Error resolving workbook:", e)
